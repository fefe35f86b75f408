"""
Shared fixtures for the photo-catalog test suite.
"""
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from PIL import Image

from errors import MetadataUnreadable
from models import ExifFacts, ImageSize, Metadata


# ── File-creation helpers ─────────────────────────────────────────────────────

def make_file(path: Path, content: bytes = b"dummy content") -> Path:
    """Create a file with the given content; create parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def make_image(path: Path, size=(4, 3)) -> Path:
    """Write a real (EXIF-less) image Pillow can identify."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = "PNG" if path.suffix.lower() == ".png" else "JPEG"
    Image.new("RGB", size, color=(200, 100, 50)).save(path, fmt)
    return path


def make_metadata(
    *,
    file_size: Optional[int] = 1024,
    exif: Optional[ExifFacts] = None,
    extracted_at: Optional[datetime] = None,
) -> Metadata:
    return Metadata(
        file_size=file_size,
        image_size=ImageSize(4000, 3000),
        exif=exif,
        extracted_at=extracted_at or datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
    )


FULL_EXIF = ExifFacts(
    fnumber=2.8,
    focal_length=35,
    focal_length_full_frame_equivalent=52,
    iso=200,
    taken_at=datetime(2024, 3, 15, 10, 30, 0, 250000, tzinfo=timezone.utc),
)


class FakeMetadataReader:
    """Metadata reader returning canned results and recording every call."""

    def __init__(self, failing: Optional[List[str]] = None, exif: Optional[ExifFacts] = FULL_EXIF) -> None:
        self.failing = set(failing or [])
        self.exif = exif
        self.calls: List[Path] = []

    def read(self, path: Path) -> Metadata:
        self.calls.append(Path(path))
        if Path(path).name in self.failing:
            raise MetadataUnreadable(Path(path), OSError("corrupt"))
        return Metadata(
            file_size=Path(path).stat().st_size,
            image_size=None,
            exif=self.exif,
            extracted_at=datetime.now(timezone.utc),
        )


class BlockingReader(FakeMetadataReader):
    """Reader that parks inside read() until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def read(self, path: Path) -> Metadata:
        self.entered.set()
        assert self.release.wait(timeout=10)
        return super().read(path)


class FakeTag:
    """Stand-in for an exifread IfdTag: values list plus printable form."""

    def __init__(self, values, printable: Optional[str] = None) -> None:
        self.values = values
        self.printable = printable if printable is not None else str(values)

    def __str__(self) -> str:
        return self.printable


class FakeRatio:
    def __init__(self, num: int, den: int) -> None:
        self.num = num
        self.den = den


def fake_tags(**overrides) -> Dict[str, FakeTag]:
    tags = {
        "EXIF FNumber": FakeTag([FakeRatio(28, 10)]),
        "EXIF FocalLength": FakeTag([FakeRatio(35, 1)]),
        "EXIF FocalLengthIn35mmFilm": FakeTag([52]),
        "EXIF ISOSpeedRatings": FakeTag([200]),
        "EXIF DateTimeOriginal": FakeTag("2024:06:01 14:00:00"),
    }
    tags.update(overrides)
    return {k: v for k, v in tags.items() if v is not None}


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Empty library root."""
    d = tmp_path / "photos"
    d.mkdir()
    return d


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 3, 15, 10, 30, 0, tzinfo=timezone.utc)
