"""Inference engine: one blocking call into the onnxruntime session.

onnxruntime allows concurrent ``run`` calls on a single session, but execution
providers differ in how well they tolerate it, so calls are serialized behind
a lock unless ``serialize`` is disabled.
"""

from __future__ import annotations

import logging
import threading
from contextlib import nullcontext
from typing import TYPE_CHECKING

import numpy as np

from edgeclassify.ml.errors import ShapeMismatchError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from edgeclassify.ml.model_handle import ModelHandle

logger = logging.getLogger(__name__)


class InferenceEngine:
    """Executes a loaded model against prepared input tensors."""

    def __init__(self, model: ModelHandle, *, serialize: bool = True) -> None:
        self._model = model
        self._lock: threading.Lock | None = threading.Lock() if serialize else None

    @property
    def serialized(self) -> bool:
        return self._lock is not None

    def allocate_output(self) -> NDArray[np.generic]:
        """Return a fresh buffer matching the declared output contract."""
        return np.zeros(self._model.output_shape, dtype=self._model.output_type)

    def run(self, input_tensor: NDArray[np.generic], output_buffer: NDArray[np.generic]) -> None:
        """Run the model once and write its first output into ``output_buffer``.

        Runtime errors propagate to the caller.

        Raises:
            ShapeMismatchError: If the produced output does not fit the buffer.
        """
        feeds = {self._model.input.name: input_tensor}
        with self._lock if self._lock is not None else nullcontext():
            (result,) = self._model.session.run([self._model.output.name], feeds)
        logger.debug("Ran %s, output shape %s", self._model.name, np.shape(result))

        result = np.asarray(result)
        if result.size != output_buffer.size:
            raise ShapeMismatchError(
                f"Model produced output of shape {result.shape}, expected {output_buffer.shape}"
            )
        np.copyto(output_buffer, result.reshape(output_buffer.shape), casting="unsafe")
