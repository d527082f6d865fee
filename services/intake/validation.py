# services/intake/validation.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

ACCEPTED_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png"})
MAX_IMAGE_BYTES = 6 * 1024 * 1024

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.]")


class ValidationError(ValueError):
    """Client-correctable upload problem. Never retried."""

    message = "Invalid upload."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class MissingImage(ValidationError):
    message = "No image uploaded."


class InvalidImageType(ValidationError):
    message = "Invalid file type. Please upload a JPEG or PNG image."


class ImageTooLarge(ValidationError):
    message = "File too large. Maximum size is 6MB."


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    content_type: str
    filename: str = "upload"

    @property
    def size(self) -> int:
        return len(self.data)


def validate_upload(upload: Optional[ImageUpload]) -> None:
    """
    Checks presence, MIME type and size, in that order.
    Raises a ValidationError subclass; returns None when the upload is acceptable.
    """
    if upload is None or not upload.data:
        raise MissingImage()

    content_type = (upload.content_type or "").lower().strip()
    if content_type not in ACCEPTED_MIME_TYPES:
        raise InvalidImageType()

    if upload.size > MAX_IMAGE_BYTES:
        raise ImageTooLarge()


def sanitize_filename(name: Optional[str]) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", (name or "").strip())
    return cleaned or "upload"


def format_size(num_bytes: int) -> str:
    if num_bytes >= 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.2f} MB"
    if num_bytes >= 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes} B"


def describe_image(data: bytes) -> str:
    """Size label for image metadata, e.g. '2.00 MB (4032x3024)'. Never raises on bad bytes."""
    if not data:
        return "unknown"

    label = format_size(len(data))
    try:
        with Image.open(BytesIO(data)) as img:
            w, h = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        logger.debug("could not read image header for size label")
        return label
    return f"{label} ({w}x{h})"
