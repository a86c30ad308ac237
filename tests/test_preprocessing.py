"""Tests for image resolution, decoding, and tensor preparation."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from classifyx.config import Settings
from classifyx.errors import DecodeError
from classifyx.ml.preprocessing import (
    ImagePreprocessor,
    ImageReference,
    decode_image,
    preprocess,
    resolve_image_bytes,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


class TestResolveImageBytes:
    def test_inline_data_returned_as_is(self) -> None:
        ref = ImageReference.from_bytes(b"abc", name="photo.jpg")
        assert ref.uri == "memory:photo.jpg"
        assert resolve_image_bytes(ref) == b"abc"

    def test_plain_path(self, tmp_path: Path) -> None:
        path = tmp_path / "photo.png"
        path.write_bytes(b"pixels")
        assert resolve_image_bytes(ImageReference.from_path(path)) == b"pixels"

    def test_file_uri(self, tmp_path: Path) -> None:
        path = tmp_path / "photo.png"
        path.write_bytes(b"pixels")
        assert resolve_image_bytes(ImageReference(uri=path.as_uri())) == b"pixels"

    def test_missing_file_raises_decode_error(self, tmp_path: Path) -> None:
        with pytest.raises(DecodeError, match="Cannot read image"):
            resolve_image_bytes(ImageReference.from_path(tmp_path / "gone.png"))

    def test_unsupported_scheme_raises_decode_error(self) -> None:
        with pytest.raises(DecodeError, match="scheme"):
            resolve_image_bytes(ImageReference(uri="content://media/external/images/42"))


class TestDecodeImage:
    def test_decodes_to_rgba(self, make_image_bytes: Callable[..., bytes]) -> None:
        decoded = decode_image(make_image_bytes(width=40, height=30, color=(10, 20, 30)))

        assert decoded.shape == (30, 40, 4)
        assert decoded.dtype == np.uint8
        assert tuple(decoded[0, 0]) == (10, 20, 30, 255)

    def test_grayscale_and_palette_sources(self) -> None:
        for mode in ("L", "P", "LA"):
            buf = io.BytesIO()
            Image.new(mode, (5, 7)).save(buf, format="PNG")
            assert decode_image(buf.getvalue()).shape == (7, 5, 4)

    def test_jpeg_source(self, make_image_bytes: Callable[..., bytes]) -> None:
        decoded = decode_image(make_image_bytes(width=16, height=8, fmt="JPEG"))
        assert decoded.shape == (8, 16, 4)

    def test_exif_orientation_applied(self) -> None:
        img = Image.new("RGB", (20, 10))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 CW on display
        buf = io.BytesIO()
        img.save(buf, format="JPEG", exif=exif.tobytes())

        assert decode_image(buf.getvalue()).shape == (20, 10, 4)

    def test_empty_bytes_raise(self) -> None:
        with pytest.raises(DecodeError, match="empty"):
            decode_image(b"")

    def test_garbage_bytes_raise(self) -> None:
        with pytest.raises(DecodeError):
            decode_image(b"this is not an image at all")

    def test_truncated_image_raises(self, make_image_bytes: Callable[..., bytes]) -> None:
        data = make_image_bytes(width=64, height=64, fmt="JPEG")
        with pytest.raises(DecodeError):
            decode_image(data[: len(data) // 2])

    def test_too_many_pixels_raise(self, make_image_bytes: Callable[..., bytes]) -> None:
        with pytest.raises(DecodeError, match="too large"):
            decode_image(make_image_bytes(width=100, height=100), max_pixels=9_999)


class TestPreprocess:
    @pytest.mark.parametrize(("height", "width"), [(1, 1), (224, 224), (17, 300), (1080, 1920), (4000, 3000)])
    def test_output_shape_independent_of_input_size(self, height: int, width: int) -> None:
        image = np.full((height, width, 4), 128, dtype=np.uint8)

        tensor = preprocess(image, 224, 224)

        assert tensor.shape == (1, 224, 224, 3)
        assert tensor.dtype == np.float32

    def test_non_square_target(self) -> None:
        image = np.zeros((50, 50, 4), dtype=np.uint8)
        assert preprocess(image, 160, 96).shape == (1, 96, 160, 3)

    def test_alpha_channel_dropped_and_scaled_to_unit(self) -> None:
        image = np.zeros((8, 8, 4), dtype=np.uint8)
        image[..., 0] = 255
        image[..., 3] = 0

        tensor = preprocess(image, 4, 4)

        np.testing.assert_allclose(tensor[0, :, :, 0], 1.0)
        np.testing.assert_allclose(tensor[0, :, :, 1:], 0.0)

    def test_raw_scale_keeps_byte_range(self) -> None:
        image = np.full((8, 8, 4), 200, dtype=np.uint8)
        tensor = preprocess(image, 4, 4, pixel_scale="raw")
        np.testing.assert_allclose(tensor, 200.0)

    def test_symmetric_scale(self) -> None:
        image = np.zeros((8, 8, 3), dtype=np.uint8)
        image[..., 2] = 255
        tensor = preprocess(image, 4, 4, pixel_scale="symmetric")
        np.testing.assert_allclose(tensor[0, :, :, 0], -1.0)
        np.testing.assert_allclose(tensor[0, :, :, 2], 1.0)

    def test_read_only_source_buffer(self) -> None:
        image = np.full((30, 20, 4), 64, dtype=np.uint8)
        image.setflags(write=False)
        assert preprocess(image, 224, 224).shape == (1, 224, 224, 3)

    def test_bad_shape_raises(self) -> None:
        with pytest.raises(DecodeError):
            preprocess(np.zeros((8, 8), dtype=np.uint8), 224, 224)


class TestImagePreprocessor:
    def test_reference_to_configured_tensor(self, make_image_bytes: Callable[..., bytes]) -> None:
        prep = ImagePreprocessor(Settings(input_width=128, input_height=64))

        tensor = prep(ImageReference.from_bytes(make_image_bytes(width=10, height=10, color=(0, 255, 0))))

        assert prep.target_shape == (1, 64, 128, 3)
        assert tensor.shape == (1, 64, 128, 3)
        np.testing.assert_allclose(tensor[0, :, :, 1], 1.0)

    def test_unreadable_reference_raises(self, tmp_path: Path) -> None:
        prep = ImagePreprocessor(Settings())
        with pytest.raises(DecodeError):
            prep(ImageReference.from_path(tmp_path / "missing.jpg"))
