"""Image preprocessing pipeline.

Decodes uploaded image bytes and turns a raster into the input tensor a
model declares. The tensor is built by a fixed chain, applied in order:

    wrap -> center crop-or-pad to a square -> bilinear resize -> normalize

Cropping and resizing operate on uint8 pixels; normalization runs last.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from edgeclassify.ml.errors import ShapeMismatchError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from edgeclassify.ml.model_handle import ModelHandle

logger = logging.getLogger(__name__)

NORMALIZE_MEAN: float = 127.5
NORMALIZE_STD: float = 127.5
SIGNED_PIXEL_OFFSET: int = 128

RasterLike = Image.Image | np.ndarray

_PIL_MODES = {1: "L", 3: "RGB", 4: "RGBA"}


def decode_image(image_bytes: bytes, max_pixels: int, max_file_size: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    EXIF orientation is applied before conversion.

    Raises:
        ValueError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ValueError("Empty image payload")
    if len(image_bytes) > max_file_size:
        raise ValueError(f"Image file is {len(image_bytes)} bytes, limit is {max_file_size}")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise ValueError(f"Image has {width * height} pixels, limit is {max_pixels}")
            img.load()
            oriented = ImageOps.exif_transpose(img)
            rgb = oriented.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc

    return np.asarray(rgb, dtype=np.uint8)


def to_raster(image: RasterLike, channels: int) -> NDArray[np.uint8]:
    """Wrap an image as an HxWxC uint8 array with ``channels`` channels.

    Grayscale is repeated across channels and alpha is dropped as needed.
    """
    if isinstance(image, Image.Image):
        mode = _PIL_MODES.get(channels)
        if mode is None:
            raise ShapeMismatchError(f"Cannot convert an image to {channels} channels")
        return np.asarray(image.convert(mode), dtype=np.uint8).reshape(image.height, image.width, channels)

    array = np.asarray(image)
    if array.ndim == 2:
        array = array[..., np.newaxis]
    if array.ndim != 3:
        raise ShapeMismatchError(f"Expected an HxW or HxWxC image, got shape {array.shape}")
    if array.shape[0] == 0 or array.shape[1] == 0:
        raise ShapeMismatchError(f"Image has zero size: {array.shape}")
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    have = array.shape[2]
    if have == channels:
        return array
    if have == 1:
        return np.repeat(array, channels, axis=2)
    if channels == 1:
        return np.asarray(Image.fromarray(array[..., :3]).convert("L"), dtype=np.uint8)[..., np.newaxis]
    if have > channels:
        return np.ascontiguousarray(array[..., :channels])
    raise ShapeMismatchError(f"Cannot convert a {have}-channel image to {channels} channels")


def crop_or_pad(image: NDArray[np.uint8], target_height: int, target_width: int) -> NDArray[np.uint8]:
    """Center-crop or zero-pad an HxWxC image to the target size."""
    height, width = image.shape[:2]
    if height == 0 or width == 0:
        raise ShapeMismatchError(f"Image has zero size: {image.shape}")

    out = np.zeros((target_height, target_width, *image.shape[2:]), dtype=image.dtype)

    src_top, dst_top, rows = _center_window(height, target_height)
    src_left, dst_left, cols = _center_window(width, target_width)
    out[dst_top : dst_top + rows, dst_left : dst_left + cols] = image[
        src_top : src_top + rows, src_left : src_left + cols
    ]
    return out


def _center_window(source: int, target: int) -> tuple[int, int, int]:
    """Return (source offset, target offset, length) of the centered overlap."""
    if source >= target:
        return (source - target) // 2, 0, target
    return 0, (target - source) // 2, source


def resize_bilinear(image: NDArray[np.uint8], size: int) -> NDArray[np.uint8]:
    """Resize an HxWxC uint8 image to ``size`` x ``size`` with bilinear interpolation."""
    if image.shape[0] == size and image.shape[1] == size:
        return image
    channels = image.shape[2]
    pil_image = Image.fromarray(image[..., 0] if channels == 1 else image)
    resized = pil_image.resize((size, size), Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8).reshape(size, size, channels)


def normalize(pixels: NDArray[np.generic]) -> NDArray[np.float32]:
    """Map the 0-255 pixel range to roughly [-1, 1]."""
    return ((pixels.astype(np.float32) - NORMALIZE_MEAN) / NORMALIZE_STD).astype(np.float32)


def denormalize(values: NDArray[np.generic]) -> NDArray[np.float32]:
    """Inverse of :func:`normalize`."""
    return (values.astype(np.float32) * NORMALIZE_STD + NORMALIZE_MEAN).astype(np.float32)


class Preprocessor:
    """Builds model input tensors according to a model's input contract."""

    def __init__(self, model: ModelHandle) -> None:
        self._model = model

    def square(self, image: RasterLike) -> NDArray[np.uint8]:
        """Wrap the image and center-crop it to a square of its shorter side."""
        raster = to_raster(image, self._model.channels)
        min_length = min(raster.shape[0], raster.shape[1])
        return crop_or_pad(raster, min_length, min_length)

    def __call__(self, image: RasterLike) -> NDArray[np.generic]:
        """Return a tensor whose shape and dtype equal the model's input contract."""
        contract = self._model.input
        squared = self.square(image)
        resized = resize_bilinear(squared, self._model.spatial_size)

        if np.issubdtype(contract.dtype, np.floating):
            pixels: NDArray[np.generic] = normalize(resized)
        elif contract.dtype == np.int8:
            # Signed quantized models take pixels re-centred on zero.
            pixels = resized.astype(np.int16) - SIGNED_PIXEL_OFFSET
        else:
            # Unsigned quantized models take raw pixels.
            pixels = resized

        if self._model.layout == "NCHW":
            pixels = np.transpose(pixels, (2, 0, 1))

        tensor = np.ascontiguousarray(pixels[np.newaxis, ...], dtype=contract.dtype)
        if tensor.shape != contract.shape:
            raise ShapeMismatchError(f"Preprocessed tensor has shape {tensor.shape}, model expects {contract.shape}")
        logger.debug("Preprocessed %s image into %s %s", squared.shape, tensor.shape, tensor.dtype)
        return tensor
