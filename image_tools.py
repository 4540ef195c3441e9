from __future__ import annotations
import base64
import datetime
import io
import logging
from typing import Optional

from PIL import Image
from PIL.ExifTags import Base, IFD

from config import IMAGE_MAX_DIMENSION

logger = logging.getLogger(__name__)

EXIF_DATE_TAGS = (Base.DateTimeOriginal, Base.DateTime)
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def resize_image(data: bytes, max_dim: int = IMAGE_MAX_DIMENSION) -> bytes:
    """Shrink ``data`` so its longest side is at most ``max_dim`` pixels.

    Images already within bounds are returned untouched; larger ones are
    re-encoded as JPEG.
    """
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        if width <= max_dim and height <= max_dim:
            return data
        scale = max_dim / max(width, height)
        size = (round(width * scale), round(height * scale))
        resized = img.convert("RGB").resize(size)
    buf = io.BytesIO()
    resized.save(buf, format="JPEG", quality=85)
    return buf.getvalue()


def to_data_url(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def _parse_exif_date(value: object) -> Optional[datetime.datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.datetime.strptime(value.strip("\x00 ")[:19], EXIF_DATE_FORMAT)
    except ValueError:
        return None


def read_exif_date(data: bytes) -> Optional[datetime.datetime]:
    """Return DateTimeOriginal or DateTime from the photo's EXIF block."""
    with Image.open(io.BytesIO(data)) as img:
        exif = img.getexif()
    for ifd in (exif, exif.get_ifd(IFD.Exif)):
        for tag in EXIF_DATE_TAGS:
            if tag in ifd:
                return _parse_exif_date(ifd[tag])
    return None


def extract_capture_date(
    photo_bytes: bytes,
    modified: datetime.datetime | None = None,
    now: datetime.datetime | None = None,
) -> datetime.datetime:
    """Return when a photo was taken.

    Falls back to the file's modified time, then to ``now``.
    """
    try:
        taken = read_exif_date(photo_bytes)
    except (OSError, ValueError, SyntaxError, KeyError, TypeError) as e:
        logger.info("EXIF parsing failed: %s", e)
        taken = None
    if taken is not None:
        return taken
    if modified is not None:
        return modified
    return now or datetime.datetime.now()
