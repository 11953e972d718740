"""Label file loading.

Label files hold one class name per line, index-aligned with the model's
output vector. Lines are commonly prefixed with their ordinal (``"0 cat"``),
which is stripped according to the configured policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from edgeclassify.ml.errors import LoadError, LoadErrorKind

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

IndexPrefix = Literal["strip", "auto", "keep"]


@dataclass(frozen=True)
class LabelSet:
    """Ordered, immutable class names."""

    labels: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, index: int) -> str:
        return self.labels[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels)


def parse_label_line(line: str, index_prefix: IndexPrefix = "strip") -> str:
    """Return the label carried by one raw line.

    ``strip`` drops everything up to and including the first space, ``auto``
    does so only when the leading token is an integer, ``keep`` leaves the
    line as is. The result is always trimmed.
    """
    text = line.strip()
    if index_prefix == "keep":
        return text

    head, sep, tail = text.partition(" ")
    if not sep:
        return text
    if index_prefix == "auto" and not head.isdigit():
        return text
    return tail.strip()


def load_labels(path: str | Path, index_prefix: IndexPrefix = "strip") -> LabelSet:
    """Read a label file into a LabelSet.

    Raises:
        LoadError: If the file is missing, unreadable, or holds no labels.
    """
    label_path = Path(path)
    try:
        raw = label_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise LoadError(LoadErrorKind.LABELS, f"Cannot read labels file {label_path}: {exc}") from exc

    labels = tuple(parse_label_line(line, index_prefix) for line in raw.splitlines() if line.strip())
    if not labels:
        raise LoadError(LoadErrorKind.LABELS, f"Labels file {label_path} is empty")

    logger.info("Loaded %d labels from %s", len(labels), label_path)
    return LabelSet(labels)
