"""Media metadata helpers for Hearth.

- content type and media kind from the file extension
- object key generation scoped under the album
- best-effort EXIF capture time (never raises)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"
DEFAULT_EXTENSION = "jpg"

IMAGE_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "avif": "image/avif",
    "tif": "image/tiff",
    "tiff": "image/tiff",
}

VIDEO_CONTENT_TYPES = {
    "mp4": "video/mp4",
    "m4v": "video/x-m4v",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
}

# EXIF tag ids
_EXIF_IFD = 0x8769
_DATETIME_ORIGINAL = 36867
_DATETIME = 306


def file_extension(filename: str) -> str:
    """Lowercase extension without the dot; DEFAULT_EXTENSION when there is none."""
    suffix = Path(filename).suffix.lower().lstrip(".")
    return suffix or DEFAULT_EXTENSION


def content_type_for(filename: str) -> str:
    ext = file_extension(filename)
    return IMAGE_CONTENT_TYPES.get(ext) or VIDEO_CONTENT_TYPES.get(ext) or DEFAULT_CONTENT_TYPE


def media_kind_for(filename: str) -> str:
    ext = file_extension(filename)
    if ext in IMAGE_CONTENT_TYPES:
        return "image"
    if ext in VIDEO_CONTENT_TYPES:
        return "video"
    return "file"


def new_object_key(album_id: int, filename: str) -> str:
    """Globally unique key under the album, e.g. albums/7/<uuid>.jpg."""
    return f"albums/{album_id}/{uuid.uuid4()}.{file_extension(filename)}"


def _parse_exif_datetime(s: str) -> Optional[datetime]:
    """
    Common EXIF datetime format: 'YYYY:MM:DD HH:MM:SS'
    """
    s = (s or "").strip().rstrip("\x00")
    if not s:
        return None
    for fmt in ("%Y:%m:%d %H:%M:%S", "%Y:%m:%d %H:%M:%S%z", "%Y-%m-%d %H:%M:%S"):
        try:
            return normalize_timestamp(datetime.strptime(s, fmt))
        except ValueError:
            continue
    return None


def normalize_timestamp(value: datetime) -> datetime:
    """Store timestamps as naive UTC so catalog ordering compares like with like."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(raw: object) -> Optional[datetime]:
    """Parse a client-supplied ISO-8601 timestamp; anything unusable yields None."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return normalize_timestamp(datetime.fromisoformat(text))
    except ValueError:
        return None


def extract_captured_at(data: bytes) -> Optional[datetime]:
    """
    Best-effort capture time from embedded EXIF.

    Prefers DateTimeOriginal (Exif IFD), then DateTime (IFD0). Files without
    metadata, non-images and corrupt headers all yield None.
    """
    if not data:
        return None
    try:
        with Image.open(BytesIO(data)) as im:
            exif = im.getexif()
            if not exif:
                return None
            raw = exif.get_ifd(_EXIF_IFD).get(_DATETIME_ORIGINAL)
            if raw is None:
                raw = exif.get(_DATETIME_ORIGINAL) or exif.get(_DATETIME)
            return _parse_exif_datetime(str(raw) if raw is not None else "")
    except UnidentifiedImageError:
        return None
    except Exception as exc:
        # Pillow raises a wide range of errors on malformed EXIF blocks
        logger.debug(f"No usable EXIF: {exc}")
        return None
