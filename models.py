import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple, Union


PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True, order=True)
class PhotoLocation:
    """
    Identity of a catalog entry: the photo's path relative to the library root.

    Paths are kept with forward slashes regardless of platform, so a snapshot
    written on Windows restores to the same keys on Linux.
    """
    path: str

    def __post_init__(self) -> None:
        raw = os.fspath(self.path).replace("\\", "/")
        if not raw.strip():
            raise ValueError("Photo location must not be empty.")
        normalized = PurePosixPath(raw)
        if normalized.is_absolute():
            raise ValueError(f"Photo location must be relative: {raw}")
        text = str(normalized)
        if text == ".":
            raise ValueError("Photo location must not point at the root itself.")
        object.__setattr__(self, "path", text)

    @staticmethod
    def relative_to(root: PathLike, absolute_path: PathLike) -> "PhotoLocation":
        """Build the location of a scanned file below root."""
        rel = Path(absolute_path).relative_to(Path(root))
        return PhotoLocation(rel.as_posix())

    def resolve(self, root: PathLike) -> Path:
        return Path(root).joinpath(*PurePosixPath(self.path).parts)

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    def __str__(self) -> str:
        return self.path


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive instants are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class ImageSize:
    width: int
    height: int


@dataclass(frozen=True)
class ExifFacts:
    """Camera-derived attributes; every field is independently optional."""
    fnumber: Optional[float] = None
    focal_length: Optional[int] = None
    focal_length_full_frame_equivalent: Optional[int] = None
    iso: Optional[int] = None
    taken_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "taken_at", _as_utc(self.taken_at))

    def is_empty(self) -> bool:
        return (
            self.fnumber is None
            and self.focal_length is None
            and self.focal_length_full_frame_equivalent is None
            and self.iso is None
            and self.taken_at is None
        )


@dataclass(frozen=True)
class Metadata:
    """
    Facts derived from a photo file at extracted_at.

    Absent fields mean "unknown", never zero. An ExifFacts without a single
    known value is stored as exif=None so that "no EXIF" has one spelling.
    """
    file_size: Optional[int]
    image_size: Optional[ImageSize]
    exif: Optional[ExifFacts]
    extracted_at: datetime

    def __post_init__(self) -> None:
        if self.file_size is not None and self.file_size < 0:
            raise ValueError(f"File size must not be negative: {self.file_size}")
        object.__setattr__(self, "extracted_at", _as_utc(self.extracted_at))
        if self.exif is not None and self.exif.is_empty():
            object.__setattr__(self, "exif", None)

    def has_exif(self) -> bool:
        return self.exif is not None


@dataclass
class ReindexSummary:
    root: str
    files_discovered: int = 0
    files_added: int = 0
    files_pruned: int = 0
    metadata_refreshed: int = 0
    metadata_failed: int = 0
    elapsed_seconds: float = 0.0
    errors: List[Tuple[str, str]] = field(default_factory=list)
