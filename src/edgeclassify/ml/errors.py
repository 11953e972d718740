"""Exception types raised by the classification pipeline."""

from __future__ import annotations

from enum import StrEnum


class LoadErrorKind(StrEnum):
    ARGUMENT = "argument"
    CONFIG = "config"
    LABELS = "labels"
    MODEL = "model"


class ClassifierError(Exception):
    """Base class for classifier failures."""


class LoadError(ClassifierError):
    """Labels or model could not be loaded."""

    def __init__(self, kind: LoadErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"[{self.kind}] {super().__str__()}"


class ShapeMismatchError(ClassifierError):
    """A tensor, image, or label set does not match the model contract."""
