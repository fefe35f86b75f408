from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

import exifread
from loguru import logger
from PIL import Image, UnidentifiedImageError

from errors import MetadataUnreadable
from models import ExifFacts, ImageSize, Metadata


EXIF_FNUMBER = "EXIF FNumber"
EXIF_FOCAL_LENGTH = "EXIF FocalLength"
EXIF_FOCAL_LENGTH_35MM = "EXIF FocalLengthIn35mmFilm"
EXIF_ISO = "EXIF ISOSpeedRatings"
EXIF_DATETIME_ORIGINAL = "EXIF DateTimeOriginal"
EXIF_OFFSET_TIME_ORIGINAL = "EXIF OffsetTimeOriginal"

EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


class MetadataReader(Protocol):
    def read(self, path: Path) -> Metadata:
        """Return the metadata of the file at path or raise MetadataUnreadable."""
        ...


MetadataReaderFactory = Callable[[], MetadataReader]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Tag value helpers ─────────────────────────────────────────────────────────

def _first_value(tag: Any) -> Any:
    values = getattr(tag, "values", tag)
    if isinstance(values, (list, tuple)):
        if not values:
            raise ValueError("empty tag")
        return values[0]
    return values


def _to_float(value: Any) -> float:
    # exifread ratios expose num/den; plain ints and Fractions convert directly
    if hasattr(value, "num") and hasattr(value, "den"):
        if value.den == 0:
            raise ZeroDivisionError("ratio with zero denominator")
        return value.num / value.den
    return float(value)


def _parse_offset(raw: str) -> Optional[timezone]:
    raw = raw.strip()
    if len(raw) != 6 or raw[0] not in "+-" or raw[3] != ":":
        return None
    hours, minutes = int(raw[1:3]), int(raw[4:6])
    delta = timedelta(hours=hours, minutes=minutes)
    return timezone(-delta if raw[0] == "-" else delta)


def parse_exif_datetime(raw: str, offset: Optional[str] = None) -> Optional[datetime]:
    """
    Parse an EXIF date string into an aware datetime.
    Uses the OffsetTimeOriginal value when given, UTC otherwise. Zeroed or
    malformed dates return None.
    """
    try:
        dt = datetime.strptime(raw.strip(), EXIF_DATE_FORMAT)
    except (ValueError, AttributeError):
        return None
    tz = None
    if offset:
        try:
            tz = _parse_offset(offset)
        except ValueError:
            tz = None
    return dt.replace(tzinfo=tz or timezone.utc).astimezone(timezone.utc)


def _try_read(name: str, path: Path, producer: Callable[[], Any]) -> Any:
    try:
        return producer()
    except (ValueError, TypeError, ZeroDivisionError, KeyError, IndexError) as e:
        logger.debug("Failed to read EXIF value {} of {}: {}", name, path, e)
        return None


def exif_facts_from_tags(tags: Dict[str, Any], path: Path) -> Optional[ExifFacts]:
    """Map exifread tags to ExifFacts, or None when no fact is present."""

    def _number(tag_name: str, convert: Callable[[float], Any]) -> Any:
        if tag_name not in tags:
            return None
        return _try_read(tag_name, path, lambda: convert(_to_float(_first_value(tags[tag_name]))))

    def _taken_at() -> Optional[datetime]:
        if EXIF_DATETIME_ORIGINAL not in tags:
            return None
        offset = tags.get(EXIF_OFFSET_TIME_ORIGINAL)
        return parse_exif_datetime(
            str(tags[EXIF_DATETIME_ORIGINAL]),
            str(offset) if offset is not None else None,
        )

    facts = ExifFacts(
        fnumber=_number(EXIF_FNUMBER, float),
        focal_length=_number(EXIF_FOCAL_LENGTH, int),
        focal_length_full_frame_equivalent=_number(EXIF_FOCAL_LENGTH_35MM, int),
        iso=_number(EXIF_ISO, int),
        taken_at=_try_read(EXIF_DATETIME_ORIGINAL, path, _taken_at),
    )
    return None if facts.is_empty() else facts


# ── Readers ───────────────────────────────────────────────────────────────────

class DefaultMetadataReader:
    """
    Reads file size from the filesystem, image size with Pillow and EXIF
    facts with exifread. Files Pillow cannot identify are unreadable.
    """

    def __init__(self, clock: Callable[[], datetime] = _now) -> None:
        self._clock = clock

    def read(self, path: Path) -> Metadata:
        path = Path(path)
        try:
            file_size = path.stat().st_size
            image_size = self._read_image_size(path)
            with open(path, "rb") as f:
                tags = exifread.process_file(f, details=False)
        except MetadataUnreadable:
            raise
        except Exception as e:
            raise MetadataUnreadable(path, e) from e

        return Metadata(
            file_size=file_size,
            image_size=image_size,
            exif=exif_facts_from_tags(tags or {}, path),
            extracted_at=self._clock(),
        )

    @staticmethod
    def _read_image_size(path: Path) -> ImageSize:
        try:
            with Image.open(path) as img:
                width, height = img.size
        except UnidentifiedImageError as e:
            raise MetadataUnreadable(path, e) from e
        return ImageSize(width=width, height=height)


def default_metadata_reader_factory() -> MetadataReader:
    return DefaultMetadataReader()
