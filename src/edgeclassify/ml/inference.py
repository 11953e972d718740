"""Worker dispatch for hosts that must not block on inference.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> Classifier.classify

``Classifier.classify`` is synchronous; this pool moves it off the event loop.
Callers waiting longer than ``queue_timeout`` for a slot get :class:`PoolBusyError`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from edgeclassify.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PoolBusyError(TimeoutError):
    """No inference slot became free within the queue timeout."""


class InferencePool:
    """Bounds concurrent classification calls and runs them on worker threads."""

    def __init__(self, settings: Settings) -> None:
        self._queue_timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="edgeclassify-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on the pool once a slot is free.

        Raises:
            PoolBusyError: If no slot frees up within the queue timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError as exc:
            logger.warning("Inference queue full, gave up after %.1fs", self._queue_timeout)
            raise PoolBusyError(f"No inference slot within {self._queue_timeout}s") from exc
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of calls currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the worker threads."""
        self._executor.shutdown(wait=True)
