"""Helpers turning uploaded bytes into validated image states."""

from __future__ import annotations

import io
from typing import Optional

from PIL import Image, UnidentifiedImageError

from tryon.models import ACCEPTED_MIME_TYPES, ImageState

_FORMAT_TO_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "HEIF": "image/heif",
    "HEIC": "image/heic",
}


class InvalidImageError(ValueError):
    """Raised when an upload is not a supported raster image."""


class ImageTooLargeError(InvalidImageError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, max_bytes: int) -> None:
        super().__init__(too_large_message(max_bytes))
        self.max_bytes = max_bytes


def too_large_message(max_bytes: int) -> str:
    return f"The selected file is too large (limit {max_bytes // (1024 * 1024)} MB)."


def detect_mime_type(data: bytes) -> Optional[str]:
    """Return the MIME type Pillow detects for the data, if any."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
            format_name = (image.format or "").upper()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
        return None
    return _FORMAT_TO_MIME.get(format_name)


def image_state_from_bytes(
    data: bytes,
    declared_mime: Optional[str] = None,
    *,
    max_bytes: Optional[int] = None,
) -> ImageState:
    """Validate an uploaded file and wrap it into an ``ImageState``.

    The MIME type is taken from the image content; the declared type is used
    only when Pillow cannot identify the format (e.g. HEIC without a plugin).
    """

    if not data:
        raise InvalidImageError("The selected file is empty.")
    if max_bytes is not None and len(data) > max_bytes:
        raise ImageTooLargeError(max_bytes)

    mime_type = detect_mime_type(data)
    if mime_type is None:
        declared = (declared_mime or "").split(";", 1)[0].strip().lower()
        if declared in {"image/heic", "image/heif"}:
            mime_type = declared
        else:
            raise InvalidImageError("The selected file is not a supported image.")
    if mime_type not in ACCEPTED_MIME_TYPES:
        raise InvalidImageError(f"Unsupported image type: {mime_type}")
    return ImageState.from_bytes(data, mime_type)


def image_dimensions(image: ImageState) -> Optional[tuple[int, int]]:
    """Return (width, height) of the image, or None if Pillow cannot read it."""

    try:
        with Image.open(io.BytesIO(image.to_bytes())) as opened:
            return opened.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        return None


__all__ = [
    "ImageTooLargeError",
    "InvalidImageError",
    "detect_mime_type",
    "image_dimensions",
    "image_state_from_bytes",
    "too_large_message",
]
