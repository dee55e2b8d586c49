"""Tests for image decoding and tensor encoding."""

from __future__ import annotations

import io
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from conftest import image_bytes
from leafcheck.errors import DecodeError, UnsupportedBatchError, UnsupportedInputShapeError, UnsupportedTypeError
from leafcheck.ml.model_handle import ElementType, TensorDescriptor
from leafcheck.ml.preprocessing import decode_image, encode_image, encode_pixels


def _random_image(width: int = 32, height: int = 24, seed: int = 0) -> Image.Image:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return Image.fromarray(pixels)


# ---------------------------------------------------------------------------
# decode_image
# ---------------------------------------------------------------------------


class TestDecodeImage:
    def test_decodes_png_to_rgb(self) -> None:
        image = decode_image(image_bytes(width=20, height=10))
        assert image.mode == "RGB"
        assert image.size == (20, 10)

    def test_grayscale_is_converted_to_rgb(self) -> None:
        buffer = io.BytesIO()
        Image.new("L", (4, 4), 128).save(buffer, format="PNG")
        image = decode_image(buffer.getvalue())
        assert image.mode == "RGB"
        assert image.getpixel((0, 0)) == (128, 128, 128)

    def test_garbage_raises_decode_error(self) -> None:
        with pytest.raises(DecodeError):
            decode_image(b"definitely not an image")

    def test_empty_raises_decode_error(self) -> None:
        with pytest.raises(DecodeError, match="empty"):
            decode_image(b"")

    def test_pixel_limit(self) -> None:
        with pytest.raises(DecodeError, match="limit"):
            decode_image(image_bytes(width=100, height=100), max_pixels=99)

    def test_bad_orientation_metadata_raises_decode_error(self) -> None:
        with (
            patch("leafcheck.ml.preprocessing.ImageOps.exif_transpose", side_effect=OSError("corrupt EXIF block")),
            pytest.raises(DecodeError, match="corrupt EXIF"),
        ):
            decode_image(image_bytes())


# ---------------------------------------------------------------------------
# encode_pixels
# ---------------------------------------------------------------------------


class TestEncodePixels:
    @pytest.mark.parametrize("element_type", [ElementType.FLOAT32, ElementType.UINT8])
    @pytest.mark.parametrize(("height", "width", "channels"), [(1, 1, 1), (4, 7, 3), (96, 96, 3), (5, 3, 1)])
    def test_buffer_has_h_w_c_elements(self, element_type: ElementType, height: int, width: int, channels: int) -> None:
        buffer = encode_pixels(_random_image(), height, width, channels, element_type)
        assert buffer.shape == (height * width * channels,)

    def test_float32_values_in_unit_range(self) -> None:
        buffer = encode_pixels(_random_image(), 16, 16, 3, ElementType.FLOAT32)
        assert buffer.dtype == np.float32
        assert buffer.min() >= 0.0
        assert buffer.max() <= 1.0

    def test_float32_scales_by_255(self) -> None:
        image = Image.new("RGB", (1, 1), (51, 102, 255))
        buffer = encode_pixels(image, 1, 1, 3, ElementType.FLOAT32)
        np.testing.assert_allclose(buffer, [0.2, 0.4, 1.0], rtol=1e-6)

    def test_uint8_passes_rgb_through(self) -> None:
        buffer = encode_pixels(_random_image(), 16, 16, 3, ElementType.UINT8)
        assert buffer.dtype == np.uint8
        assert buffer.min() >= 0
        assert buffer.max() <= 255

    def test_rgb_order_and_row_major_layout(self) -> None:
        image = Image.new("RGB", (2, 2))
        image.putpixel((0, 0), (255, 0, 0))
        image.putpixel((1, 0), (0, 0, 255))
        image.putpixel((0, 1), (1, 2, 3))
        image.putpixel((1, 1), (4, 5, 6))

        buffer = encode_pixels(image, 2, 2, 3, ElementType.UINT8)

        assert buffer.tolist() == [255, 0, 0, 0, 0, 255, 1, 2, 3, 4, 5, 6]

    @pytest.mark.parametrize(
        ("color", "expected"),
        [((10, 200, 30), 124), ((255, 255, 255), 255), ((0, 0, 0), 0), ((100, 50, 25), 62)],
    )
    def test_uint8_luminance_is_rounded(self, color: tuple[int, int, int], expected: int) -> None:
        image = Image.new("RGB", (3, 3), color)
        buffer = encode_pixels(image, 3, 3, 1, ElementType.UINT8)
        assert buffer.tolist() == [expected] * 9

    def test_float32_luminance(self) -> None:
        image = Image.new("RGB", (2, 2), (10, 200, 30))
        buffer = encode_pixels(image, 2, 2, 1, ElementType.FLOAT32)
        np.testing.assert_allclose(buffer, [123.81 / 255.0] * 4, rtol=1e-5)

    def test_resizes_to_target(self) -> None:
        image = Image.new("RGB", (100, 50), (9, 9, 9))
        buffer = encode_pixels(image, 8, 4, 3, ElementType.UINT8)
        assert buffer.size == 8 * 4 * 3
        assert set(buffer.tolist()) == {9}

    def test_unsupported_element_type(self) -> None:
        with pytest.raises(UnsupportedTypeError):
            encode_pixels(_random_image(), 4, 4, 3, "float16")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# encode_image
# ---------------------------------------------------------------------------


class TestEncodeImage:
    def test_wraps_as_single_batch(self) -> None:
        descriptor = TensorDescriptor("input", (1, 96, 96, 3), ElementType.FLOAT32)
        tensor = encode_image(_random_image(width=100, height=100), descriptor)
        assert tensor.shape == (1, 96, 96, 3)
        assert tensor.dtype == np.float32

    def test_grayscale_model(self) -> None:
        descriptor = TensorDescriptor("input", (1, 28, 28, 1), ElementType.UINT8)
        tensor = encode_image(_random_image(), descriptor)
        assert tensor.shape == (1, 28, 28, 1)
        assert tensor.dtype == np.uint8

    def test_batch_other_than_one_rejected(self) -> None:
        descriptor = TensorDescriptor("input", (2, 8, 8, 3), ElementType.FLOAT32)
        with pytest.raises(UnsupportedBatchError):
            encode_image(_random_image(), descriptor)

    @pytest.mark.parametrize("shape", [(1, 8, 8), (1, 8, 8, 4), (1, -1, 8, 3), (1, 8, 8, 3, 1)])
    def test_unsupported_input_shapes(self, shape: tuple[int, ...]) -> None:
        descriptor = TensorDescriptor("input", shape, ElementType.FLOAT32)
        with pytest.raises(UnsupportedInputShapeError):
            encode_image(_random_image(), descriptor)
