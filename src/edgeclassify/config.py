"""Environment-based configuration for edgeclassify."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from EDGECLASSIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EDGECLASSIFY_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Assets
    models_dir: str = "models"
    labels_file: str = "models/labels.txt"
    model_file: str = "models/model.onnx"
    label_index_prefix: Literal["strip", "auto", "keep"] = "strip"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Guard the session with a lock so only one run executes at a time
    serialize_inference: bool = True

    # Output post-processing
    output_transform: Literal["identity", "dequantize", "softmax"] = "identity"
    output_scale: float = Field(default=1.0, gt=0.0)
    output_zero_point: int = 0
    default_top_k: int = Field(default=5, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
