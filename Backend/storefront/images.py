"""
Image compression for store uploads (banners, category and product images).

Uploads are decoded with Pillow, shrunk so the longest side is at most
IMAGE_MAX_DIMENSION pixels, then re-encoded until they fit in
IMAGE_MAX_BYTES. JPEG and WebP step down in quality first; every format
falls back to shrinking further.
"""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image as PILImage
from PIL import ImageOps, UnidentifiedImageError

from .core.config import get_settings

logger = logging.getLogger(__name__)

_FORMAT_TO_EXT = {
    "JPEG": "jpg",
    "PNG": "png",
    "WEBP": "webp",
}

_FORMAT_TO_CONTENT_TYPE = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}

_START_QUALITY = 85
_MIN_QUALITY = 40
_QUALITY_STEP = 15
_SHRINK_FACTOR = 0.8
_MIN_SIDE = 64


class ImageProcessingError(ValueError):
    """Raised when an upload is not a readable image or cannot be made small enough."""


@dataclass
class CompressedImage:
    content: bytes
    content_type: str
    extension: str
    width: int
    height: int


def _prepare_mode(img: PILImage.Image, fmt: str) -> PILImage.Image:
    if fmt == "JPEG":
        if img.mode not in ("RGB", "L"):
            return img.convert("RGB")
        return img
    if img.mode not in ("RGB", "RGBA", "L", "LA", "P") or (fmt == "WEBP" and img.mode in ("P", "LA")):
        return img.convert("RGBA")
    return img


def _encode(img: PILImage.Image, fmt: str, quality: int) -> bytes:
    buf = BytesIO()
    if fmt == "JPEG":
        img.save(buf, format=fmt, quality=quality, optimize=True, progressive=True)
    elif fmt == "WEBP":
        img.save(buf, format=fmt, quality=quality, method=4)
    else:
        img.save(buf, format=fmt, optimize=True)
    return buf.getvalue()


def compress_image(
    data: bytes,
    max_bytes: Optional[int] = None,
    max_dimension: Optional[int] = None,
) -> CompressedImage:
    """
    Compress raw upload bytes.

    JPEG, PNG and WebP keep their format; anything else Pillow can read
    (GIF, BMP, TIFF...) is re-encoded as PNG.

    Raises:
        ImageProcessingError: If the bytes are not an image, or the image
            cannot be brought under max_bytes
    """
    settings = get_settings()
    max_bytes = max_bytes or settings.image_max_bytes
    max_dimension = max_dimension or settings.image_max_dimension

    if not data:
        raise ImageProcessingError("Empty image upload")

    try:
        img = PILImage.open(BytesIO(data))
        img.load()  # force decode to catch truncated files early
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError) as e:
        raise ImageProcessingError(f"Could not read image: {e}") from e

    fmt = (img.format or "").upper()
    if fmt not in _FORMAT_TO_EXT:
        fmt = "PNG"

    # Respect camera orientation before resizing
    img = ImageOps.exif_transpose(img)
    img = _prepare_mode(img, fmt)
    img.thumbnail((max_dimension, max_dimension), PILImage.Resampling.LANCZOS)

    quality = _START_QUALITY
    while True:
        content = _encode(img, fmt, quality)
        if len(content) <= max_bytes:
            break

        if fmt in ("JPEG", "WEBP") and quality > _MIN_QUALITY:
            quality = max(_MIN_QUALITY, quality - _QUALITY_STEP)
            continue

        width, height = img.size
        if max(width, height) <= _MIN_SIDE:
            raise ImageProcessingError(
                f"Image could not be compressed below {max_bytes} bytes"
            )
        img = img.resize(
            (max(1, int(width * _SHRINK_FACTOR)), max(1, int(height * _SHRINK_FACTOR))),
            PILImage.Resampling.LANCZOS,
        )

    width, height = img.size
    logger.info(
        f"🖼️ Compressed image {len(data)} -> {len(content)} bytes ({width}x{height} {fmt})"
    )
    return CompressedImage(
        content=content,
        content_type=_FORMAT_TO_CONTENT_TYPE[fmt],
        extension=_FORMAT_TO_EXT[fmt],
        width=width,
        height=height,
    )
