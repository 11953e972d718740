"""On-device single-image classification with ONNX models."""

from edgeclassify.ml.errors import ClassifierError, LoadError, LoadErrorKind, ShapeMismatchError
from edgeclassify.ml.image_classifier import Category, Classifier, LoadResult

__version__ = "0.1.0"

__all__ = [
    "Category",
    "Classifier",
    "ClassifierError",
    "LoadError",
    "LoadErrorKind",
    "LoadResult",
    "ShapeMismatchError",
]
