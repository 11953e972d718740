"""Shared fixtures: label files and tiny ONNX models built with onnx.helper."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper, numpy_helper

from edgeclassify.config import Settings
from edgeclassify.ml.model_handle import ModelHandle, TensorContract

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/edgeclassify_test_models",
        "intra_op_threads": 1,
        "inter_op_threads": 1,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def save_constant_model(
    path: Path,
    scores: Sequence[float],
    *,
    input_shape: Sequence[int | str] = (1, 8, 8, 3),
    input_type: int = TensorProto.FLOAT,
    output_type: int = TensorProto.FLOAT,
) -> Path:
    """Write a model that ignores its image and always emits ``[scores]``.

    The image still flows through the graph (summed and multiplied by zero)
    so the runtime checks the input shape and type.
    """
    image = helper.make_tensor_value_info("image", input_type, list(input_shape))
    out = helper.make_tensor_value_info("scores", output_type, [1, len(scores)])
    constant = numpy_helper.from_array(np.asarray([scores], dtype=np.float32), name="constant_scores")
    zero = numpy_helper.from_array(np.asarray(0.0, dtype=np.float32), name="zero")
    nodes = [
        helper.make_node("Cast", ["image"], ["image_float"], to=TensorProto.FLOAT),
        helper.make_node("ReduceSum", ["image_float"], ["total"], keepdims=0),
        helper.make_node("Mul", ["total", "zero"], ["nothing"]),
        helper.make_node("Add", ["nothing", "constant_scores"], ["scores_float"]),
        helper.make_node("Cast", ["scores_float"], ["scores"], to=output_type),
    ]
    graph = helper.make_graph(nodes, "constant_scores", [image], [out], initializer=[constant, zero])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.save(model, str(path))
    return path


def fake_model_handle(
    input_shape: tuple[int, ...] = (1, 8, 8, 3),
    input_dtype: type = np.float32,
    output_shape: tuple[int, ...] = (1, 2),
    output_dtype: type = np.float32,
    session: object | None = None,
) -> ModelHandle:
    return ModelHandle(
        session=session if session is not None else MagicMock(),  # type: ignore[arg-type]
        input=TensorContract(name="image", shape=input_shape, dtype=np.dtype(input_dtype)),
        output=TensorContract(name="scores", shape=output_shape, dtype=np.dtype(output_dtype)),
        path=Path("/tmp/fake_model.onnx"),
    )


@pytest.fixture()
def write_labels(tmp_path: Path) -> Callable[[str], Path]:
    """Write label file contents and return the file's path."""

    def _write(content: str, name: str = "labels.txt") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return make_settings(models_dir=str(tmp_path / "models"))
