"""Image preprocessing: resolve, decode, resize, and normalize.

Turns an ``ImageReference`` into the channel-last float32 tensor the model
expects. Decoding goes through Pillow, which also applies EXIF orientation
and handles palette, grayscale, and 16-bit sources.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal
from urllib.parse import unquote, urlparse

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from classifyx.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

PixelScale = Literal["unit", "raw", "symmetric"]


@dataclass(frozen=True)
class ImageReference:
    """Handle to a user-selected image.

    Either carries the encoded bytes inline (an upload) or points at a file by
    path or ``file://`` URI. The reference is resolved only when the pipeline
    runs.
    """

    uri: str
    data: bytes | None = None

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "upload") -> ImageReference:
        return cls(uri=f"memory:{name}", data=data)

    @classmethod
    def from_path(cls, path: str | Path) -> ImageReference:
        return cls(uri=str(path))


def resolve_image_bytes(reference: ImageReference) -> bytes:
    """Return the encoded image bytes behind a reference.

    Raises:
        DecodeError: If the reference cannot be resolved (missing file, no access,
            unsupported scheme).
    """
    if reference.data is not None:
        return reference.data

    parsed = urlparse(reference.uri)
    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
    elif len(parsed.scheme) <= 1:
        # Plain paths, including Windows drive letters.
        path = Path(reference.uri)
    else:
        raise DecodeError(f"Unsupported image reference scheme: {parsed.scheme}")

    try:
        return path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Cannot read image {reference.uri}: {exc}") from exc


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGBA uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow understands).
        max_pixels: Reject images with more pixels than this.

    Returns:
        HxWx4 RGBA uint8 numpy array.

    Raises:
        DecodeError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise DecodeError("Image data is empty")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if max_pixels is not None and width * height > max_pixels:
                raise DecodeError(f"Image too large: {width}x{height} exceeds {max_pixels} pixels")
            img = ImageOps.exif_transpose(img)
            return np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Unsupported or unreadable image: {exc}") from exc
    except OSError as exc:
        # Truncated or corrupt data surfaces from Pillow as OSError.
        raise DecodeError(f"Corrupt image data: {exc}") from exc


def preprocess(
    image: NDArray[np.uint8],
    target_width: int,
    target_height: int,
    pixel_scale: PixelScale = "unit",
) -> NDArray[np.float32]:
    """Resize and normalize a decoded image into a model input tensor.

    Args:
        image: HxWx4 RGBA (or HxWx3 RGB) uint8 array of any size.
        target_width: Model input width.
        target_height: Model input height.
        pixel_scale: ``unit`` maps to [0, 1], ``raw`` keeps 0-255,
            ``symmetric`` maps to [-1, 1].

    Returns:
        float32 tensor of shape (1, target_height, target_width, 3).
    """
    if image.ndim != 3 or image.shape[2] not in (3, 4) or image.shape[0] == 0 or image.shape[1] == 0:
        raise DecodeError(f"Expected an HxWx4 or HxWx3 image, got shape {image.shape}")

    # Image.fromarray copies, so read-only source buffers are fine.
    rgb = Image.fromarray(np.ascontiguousarray(image[:, :, :3]))
    resized = rgb.resize((target_width, target_height), resample=Image.Resampling.BILINEAR)

    tensor = np.asarray(resized, dtype=np.float32)
    if pixel_scale == "unit":
        tensor = tensor / 255.0
    elif pixel_scale == "symmetric":
        tensor = tensor / 127.5 - 1.0

    return np.expand_dims(tensor, axis=0).astype(np.float32, copy=False)


class ImagePreprocessor:
    """Turns image references into model input tensors using configured sizes."""

    def __init__(self, settings: Settings) -> None:
        self._width = settings.input_width
        self._height = settings.input_height
        self._pixel_scale: PixelScale = settings.pixel_scale
        self._max_pixels = settings.max_image_pixels

    @property
    def target_shape(self) -> tuple[int, int, int, int]:
        return (1, self._height, self._width, 3)

    def __call__(self, reference: ImageReference) -> NDArray[np.float32]:
        decoded = decode_image(resolve_image_bytes(reference), max_pixels=self._max_pixels)
        logger.debug("Decoded %s to %dx%d", reference.uri, decoded.shape[1], decoded.shape[0])
        return preprocess(decoded, self._width, self._height, self._pixel_scale)
