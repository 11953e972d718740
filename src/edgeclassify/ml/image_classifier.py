"""Image classifier: labels + model + the predict pipeline.

Construction goes through :meth:`Classifier.try_load` (typed result) or
:meth:`Classifier.load_with` (classifier or ``None``); neither raises. A
constructed classifier is immutable, and ``predict`` may be called from
several threads at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import ValidationError

from edgeclassify.config import Settings
from edgeclassify.ml.engine import InferenceEngine
from edgeclassify.ml.errors import ClassifierError, LoadError, LoadErrorKind, ShapeMismatchError
from edgeclassify.ml.labels import load_labels
from edgeclassify.ml.model_handle import load_model
from edgeclassify.ml.postprocessing import Category, build_output_transform, identity, postprocess
from edgeclassify.ml.preprocessing import Preprocessor

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from edgeclassify.ml.labels import LabelSet
    from edgeclassify.ml.model_handle import ModelHandle
    from edgeclassify.ml.preprocessing import RasterLike

logger = logging.getLogger(__name__)

__all__ = ["Category", "Classifier", "LoadResult"]


@dataclass(frozen=True)
class LoadResult:
    """Outcome of classifier construction: a classifier or the error that prevented it."""

    classifier: Classifier | None = None
    error: ClassifierError | None = None

    @property
    def ok(self) -> bool:
        return self.classifier is not None


class Classifier:
    """Classifies single images with a loaded model and its label set."""

    def __init__(
        self,
        labels: LabelSet,
        model: ModelHandle,
        *,
        output_transform: Callable[[NDArray[np.generic]], NDArray[np.float32]] = identity,
        serialize_inference: bool = True,
    ) -> None:
        if len(labels) != model.num_classes:
            raise ShapeMismatchError(
                f"Label set has {len(labels)} entries but model {model.name} outputs {model.num_classes} scores"
            )
        self._labels = labels
        self._model = model
        self._preprocess = Preprocessor(model)
        self._engine = InferenceEngine(model, serialize=serialize_inference)
        self._output_transform = output_transform

    # -- Construction -------------------------------------------------------

    @classmethod
    def try_load(cls, labels_file: str, model_file: str, settings: Settings | None = None) -> LoadResult:
        """Load labels then model, capturing any failure in the result."""
        try:
            settings = settings or Settings()
            if not labels_file or not model_file:
                raise LoadError(LoadErrorKind.ARGUMENT, "Both a labels file and a model file are required")
            labels = load_labels(labels_file, settings.label_index_prefix)
            model = load_model(model_file, settings)
            classifier = cls(
                labels,
                model,
                output_transform=build_output_transform(settings),
                serialize_inference=settings.serialize_inference,
            )
        except ValidationError as exc:
            error = LoadError(LoadErrorKind.CONFIG, f"Invalid settings: {exc}")
            logger.exception("Can't initialize Classifier: %s", error)
            return LoadResult(error=error)
        except ClassifierError as exc:
            logger.exception("Can't initialize Classifier: %s", exc)
            return LoadResult(error=exc)
        return LoadResult(classifier=classifier)

    @classmethod
    def load_with(cls, labels_file: str, model_file: str, settings: Settings | None = None) -> Classifier | None:
        """Return a ready classifier, or ``None`` if anything failed to load."""
        return cls.try_load(labels_file, model_file, settings).classifier

    # -- Properties ---------------------------------------------------------

    @property
    def labels(self) -> LabelSet:
        return self._labels

    @property
    def model(self) -> ModelHandle:
        return self._model

    @property
    def engine(self) -> InferenceEngine:
        return self._engine

    # -- Prediction ---------------------------------------------------------

    def classify(self, image: RasterLike, top_k: int | None = None) -> list[Category]:
        """Classify an image and return categories ranked by score.

        Args:
            image: PIL image or HxW / HxWxC uint8 array.
            top_k: Keep only the best ``top_k`` categories (all when ``None``).

        Raises:
            ShapeMismatchError: If the image or model output violates the contract.
        """
        input_tensor = self._preprocess(image)
        output_buffer = self._engine.allocate_output()
        self._engine.run(input_tensor, output_buffer)
        categories = postprocess(output_buffer, self._labels.labels, self._output_transform)
        if top_k is not None:
            return categories[:top_k]
        return categories

    def predict(self, image: RasterLike) -> Category:
        """Return the highest-scoring category for an image."""
        return self.classify(image)[0]
