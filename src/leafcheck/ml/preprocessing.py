"""Image preprocessing: decode photos and encode them as model input tensors.

Decoding handles format detection, EXIF orientation, RGB conversion and a
pixel-count limit. Encoding resizes to the model's declared height/width,
converts channels (RGB or luminance) and scales to the declared element type.
The encoder always builds a flat buffer; the ``[1, H, W, C]`` tensor is a
reshape view of it.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Any

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from leafcheck.errors import (
    DecodeError,
    UnsupportedBatchError,
    UnsupportedInputShapeError,
    UnsupportedTypeError,
)
from leafcheck.ml.model_handle import ElementType

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from leafcheck.ml.model_handle import TensorDescriptor

logger = logging.getLogger(__name__)

LUMA_WEIGHTS: NDArray[np.float64] = np.array([0.299, 0.587, 0.114], dtype=np.float64)
SUPPORTED_CHANNELS = (1, 3)


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> Image.Image:
    """Decode raw image bytes into an upright RGB Pillow image.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Reject images with more pixels than this.

    Raises:
        DecodeError: If the bytes are empty, not an image, or too large.
    """
    if not image_bytes:
        raise DecodeError("Image data is empty")

    try:
        image = Image.open(io.BytesIO(image_bytes))
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Failed to decode image: {exc}") from exc

    width, height = image.size
    if max_pixels is not None and width * height > max_pixels:
        raise DecodeError(f"Image has {width * height} pixels, limit is {max_pixels}")

    try:
        image.load()
        image = ImageOps.exif_transpose(image) or image
    except (OSError, ValueError) as exc:
        raise DecodeError(f"Failed to decode image: {exc}") from exc

    logger.debug("Decoded %s image %dx%d (mode=%s)", image.format, image.width, image.height, image.mode)
    return image.convert("RGB")


def encode_image(image: Image.Image, descriptor: TensorDescriptor) -> NDArray[Any]:
    """Encode an image into the exact tensor a model input declares.

    Args:
        image: Decoded image of any size.
        descriptor: Model input descriptor, shape ``[batch, height, width, channels]``.

    Returns:
        Array of shape ``[1, height, width, channels]`` and the declared dtype.

    Raises:
        UnsupportedInputShapeError: If the shape is not rank 4 with known, positive
            height/width and 1 or 3 channels.
        UnsupportedBatchError: If the batch dimension is not 1.
        UnsupportedTypeError: If the element type is neither float32 nor uint8.
    """
    shape = descriptor.shape
    if len(shape) != 4:
        raise UnsupportedInputShapeError(f"Expected 4D input tensor, got {len(shape)}D {shape}")

    batch, height, width, channels = shape
    logger.debug("Expected input: batch=%d, h=%d, w=%d, c=%d", batch, height, width, channels)
    if batch != 1:
        raise UnsupportedBatchError(f"Batch size {batch} not supported, only 1")
    if height <= 0 or width <= 0:
        raise UnsupportedInputShapeError(f"Input height/width must be fixed, got {shape}")
    if channels not in SUPPORTED_CHANNELS:
        raise UnsupportedInputShapeError(f"Input must have 1 or 3 channels, got {channels}")

    flat = encode_pixels(image, height, width, channels, descriptor.element_type)
    return flat.reshape(1, height, width, channels)


def encode_pixels(
    image: Image.Image,
    height: int,
    width: int,
    channels: int,
    element_type: ElementType,
) -> NDArray[Any]:
    """Resize an image and flatten it into ``height * width * channels`` values.

    Pixels are emitted row by row; each pixel contributes R, G, B (three
    channels) or its luminance ``0.299R + 0.587G + 0.114B`` (one channel).
    float32 values are scaled to [0, 1]; uint8 values keep the 8-bit range,
    with luminance rounded to the nearest integer.
    """
    try:
        element_type = ElementType(element_type)
    except ValueError:
        raise UnsupportedTypeError(f"Unsupported input type: {element_type}") from None
    if channels not in SUPPORTED_CHANNELS:
        raise UnsupportedInputShapeError(f"Input must have 1 or 3 channels, got {channels}")

    resized = image.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
    pixels = np.asarray(resized, dtype=np.float64)

    if channels == 3:
        values = pixels
    else:
        values = pixels @ LUMA_WEIGHTS

    if element_type is ElementType.FLOAT32:
        encoded = np.clip(values / 255.0, 0.0, 1.0).astype(np.float32)
    else:
        encoded = np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)

    return encoded.reshape(-1)
