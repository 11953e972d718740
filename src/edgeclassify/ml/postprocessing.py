"""Turn raw output tensors into ranked, labelled categories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from edgeclassify.ml.errors import ShapeMismatchError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from numpy.typing import NDArray

    from edgeclassify.config import Settings


@dataclass(frozen=True)
class Category:
    """A single classification hypothesis."""

    label: str
    score: float


def identity(output: NDArray[np.generic]) -> NDArray[np.float32]:
    return np.asarray(output, dtype=np.float32)


@dataclass(frozen=True)
class Dequantize:
    """Map integer-encoded scores back to floats: ``(q - zero_point) * scale``."""

    scale: float
    zero_point: int = 0

    def __call__(self, output: NDArray[np.generic]) -> NDArray[np.float32]:
        return ((output.astype(np.float32) - self.zero_point) * self.scale).astype(np.float32)


def softmax(output: NDArray[np.generic]) -> NDArray[np.float32]:
    logits = output.astype(np.float32)
    exp = np.exp(logits - logits.max())
    return (exp / exp.sum()).astype(np.float32)


def build_output_transform(settings: Settings) -> Callable[[NDArray[np.generic]], NDArray[np.float32]]:
    if settings.output_transform == "dequantize":
        return Dequantize(scale=settings.output_scale, zero_point=settings.output_zero_point)
    if settings.output_transform == "softmax":
        return softmax
    return identity


def label_scores(labels: Sequence[str], scores: NDArray[np.floating]) -> list[Category]:
    """Pair each score with the label at the same index.

    Raises:
        ShapeMismatchError: If there are not exactly as many scores as labels.
    """
    flat = np.ravel(scores)
    if len(labels) != flat.size:
        raise ShapeMismatchError(f"Model produced {flat.size} scores for {len(labels)} labels")
    return [Category(label=label, score=float(score)) for label, score in zip(labels, flat, strict=True)]


def rank(categories: Sequence[Category]) -> list[Category]:
    """Sort by descending score; equal scores keep their label-file order."""
    return sorted(categories, key=lambda category: -category.score)


def postprocess(
    output: NDArray[np.generic],
    labels: Sequence[str],
    transform: Callable[[NDArray[np.generic]], NDArray[np.float32]] = identity,
) -> list[Category]:
    """Apply the output transform, label every position, and rank the result."""
    return rank(label_scores(labels, transform(output)))
