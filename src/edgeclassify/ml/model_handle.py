"""Model handle: resolve, load, and introspect an ONNX classification model.

The handle owns the onnxruntime InferenceSession for its whole lifetime and
records the tensor contracts of the first declared input and output.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import numpy as np
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from edgeclassify.ml.errors import LoadError, LoadErrorKind

if TYPE_CHECKING:
    from edgeclassify.config import Settings

logger = logging.getLogger(__name__)

HF_SCHEME = "hf://"

Layout = Literal["NHWC", "NCHW"]

_ONNX_DTYPES: dict[str, np.dtype] = {
    "tensor(float)": np.dtype(np.float32),
    "tensor(float16)": np.dtype(np.float16),
    "tensor(double)": np.dtype(np.float64),
    "tensor(uint8)": np.dtype(np.uint8),
    "tensor(int8)": np.dtype(np.int8),
    "tensor(int32)": np.dtype(np.int32),
    "tensor(int64)": np.dtype(np.int64),
}

_CHANNEL_COUNTS = (1, 3, 4)


# ---------------------------------------------------------------------------
# Tensor contracts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TensorContract:
    """Declared name, shape, and element type of one model tensor."""

    name: str
    shape: tuple[int, ...]
    dtype: np.dtype

    @property
    def size(self) -> int:
        return math.prod(self.shape)


@dataclass(frozen=True)
class ModelHandle:
    """A loaded model and the contracts of its first input and output."""

    session: InferenceSession
    input: TensorContract
    output: TensorContract
    path: Path

    @property
    def input_shape(self) -> tuple[int, ...]:
        return self.input.shape

    @property
    def output_shape(self) -> tuple[int, ...]:
        return self.output.shape

    @property
    def input_type(self) -> np.dtype:
        return self.input.dtype

    @property
    def output_type(self) -> np.dtype:
        return self.output.dtype

    @property
    def name(self) -> str:
        return self.path.stem

    @property
    def layout(self) -> Layout:
        return infer_layout(self.input.shape)

    @property
    def spatial_size(self) -> int:
        """Side length of the square image the model expects."""
        if self.layout == "NHWC":
            return self.input.shape[1]
        return self.input.shape[2]

    @property
    def channels(self) -> int:
        if self.layout == "NHWC":
            return self.input.shape[3]
        return self.input.shape[1]

    @property
    def num_classes(self) -> int:
        """Length of the score vector, i.e. the output size without the batch axis."""
        return math.prod(self.output.shape[1:]) if len(self.output.shape) > 1 else self.output.shape[0]


def infer_layout(shape: tuple[int, ...]) -> Layout:
    """Guess whether a rank-4 image input is channels-last or channels-first."""
    if shape[3] in _CHANNEL_COUNTS:
        return "NHWC"
    if shape[1] in _CHANNEL_COUNTS:
        return "NCHW"
    return "NHWC"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def resolve_model_path(identifier: str, models_dir: str | Path) -> Path:
    """Turn a model identifier into a local file path.

    Identifiers are either local paths or ``hf://<owner>/<repo>/<filename>``,
    which are downloaded from HuggingFace into ``models_dir``.
    """
    if not identifier.startswith(HF_SCHEME):
        return Path(identifier)

    parts = identifier[len(HF_SCHEME) :].split("/")
    if len(parts) < 3 or not all(parts):
        raise LoadError(LoadErrorKind.MODEL, f"Malformed HuggingFace model identifier: {identifier}")

    repo_id = "/".join(parts[:2])
    filename = parts[-1]
    subfolder = "/".join(parts[2:-1]) or None

    local_dir = Path(models_dir)
    try:
        local_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise LoadError(LoadErrorKind.MODEL, f"Cannot create models directory {local_dir}: {exc}") from exc
    try:
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=filename,
                subfolder=subfolder,
                local_dir=str(local_dir),
            )
        )
    except Exception as exc:
        raise LoadError(LoadErrorKind.MODEL, f"Cannot download {identifier}: {exc}") from exc

    logger.info("Downloaded %s to %s", identifier, downloaded)
    return downloaded


def load_model(model_file: str, settings: Settings) -> ModelHandle:
    """Create an InferenceSession for ``model_file`` and read its tensor contracts.

    Raises:
        LoadError: If the model is missing, rejected by the runtime, or does not
            declare a usable image input and score output.
    """
    path = resolve_model_path(model_file, settings.models_dir)
    try:
        found = path.is_file()
    except OSError as exc:
        raise LoadError(LoadErrorKind.MODEL, f"Cannot access model file {path}: {exc}") from exc
    if not found:
        raise LoadError(LoadErrorKind.MODEL, f"Model file not found: {path}")

    try:
        session = InferenceSession(
            str(path),
            sess_options=build_session_options(settings),
            providers=build_providers(settings),
        )
    except Exception as exc:
        raise LoadError(LoadErrorKind.MODEL, f"Runtime rejected model {path}: {exc}") from exc

    inputs = session.get_inputs()
    outputs = session.get_outputs()
    if not inputs:
        raise LoadError(LoadErrorKind.MODEL, f"Model {path} declares no input tensors")
    if not outputs:
        raise LoadError(LoadErrorKind.MODEL, f"Model {path} declares no output tensors")

    input_contract = _read_contract(inputs[0], path)
    output_contract = _read_contract(outputs[0], path)
    _check_image_input(input_contract, path)

    handle = ModelHandle(session=session, input=input_contract, output=output_contract, path=path)
    logger.info(
        "Loaded model %s (input=%s %s %s, output=%s %s)",
        path,
        input_contract.shape,
        input_contract.dtype,
        handle.layout,
        output_contract.shape,
        output_contract.dtype,
    )
    return handle


def _read_contract(node_arg: object, path: Path) -> TensorContract:
    name: str = node_arg.name  # type: ignore[attr-defined]
    onnx_type: str = node_arg.type  # type: ignore[attr-defined]
    raw_shape: list[int | str | None] = list(node_arg.shape)  # type: ignore[attr-defined]

    dtype = _ONNX_DTYPES.get(onnx_type)
    if dtype is None:
        raise LoadError(LoadErrorKind.MODEL, f"Tensor '{name}' in {path} has unsupported type {onnx_type}")
    if not raw_shape:
        raise LoadError(LoadErrorKind.MODEL, f"Tensor '{name}' in {path} is a scalar")

    shape: list[int] = []
    for axis, dim in enumerate(raw_shape):
        if isinstance(dim, int) and dim > 0:
            shape.append(dim)
        elif axis == 0:
            # Dynamic batch axis: this pipeline always feeds one image.
            shape.append(1)
        else:
            raise LoadError(
                LoadErrorKind.MODEL,
                f"Tensor '{name}' in {path} has dynamic dimension {dim!r} at axis {axis}",
            )
    return TensorContract(name=name, shape=tuple(shape), dtype=dtype)


def _check_image_input(contract: TensorContract, path: Path) -> None:
    if len(contract.shape) != 4:
        raise LoadError(
            LoadErrorKind.MODEL,
            f"Model {path} input must be rank 4 (batch, height, width, channels), got {contract.shape}",
        )
    if contract.shape[0] != 1:
        raise LoadError(LoadErrorKind.MODEL, f"Model {path} has fixed batch size {contract.shape[0]}, expected 1")
    if infer_layout(contract.shape) == "NHWC":
        height, width = contract.shape[1], contract.shape[2]
    else:
        height, width = contract.shape[2], contract.shape[3]
    if height != width:
        raise LoadError(LoadErrorKind.MODEL, f"Model {path} expects a non-square input {height}x{width}")


# ---------------------------------------------------------------------------
# Runtime options
# ---------------------------------------------------------------------------


def build_providers(settings: Settings) -> list[str | tuple[str, dict[str, object]]]:
    device = settings.device
    if device == "cuda":
        return [
            (
                "CUDAExecutionProvider",
                {
                    "device_id": 0,
                    "gpu_mem_limit": settings.gpu_mem_limit,
                    "arena_extend_strategy": "kSameAsRequested",
                },
            ),
            "CPUExecutionProvider",
        ]
    if device == "openvino":
        return [
            ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
            "CPUExecutionProvider",
        ]
    return ["CPUExecutionProvider"]


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True

    if settings.device == "openvino":
        # OpenVINO does its own graph optimization
        from onnxruntime import GraphOptimizationLevel

        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts
