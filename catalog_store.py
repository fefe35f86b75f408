import gzip
import json
import os
import threading
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from loguru import logger

from errors import UnknownLocation
from models import ExifFacts, ImageSize, Metadata, PhotoLocation

SNAPSHOT_FILENAME = "photos.dat"

# Older snapshot readers expect an empty map rather than an empty list.
EMPTY_SNAPSHOT = "{}"

CORRUPT_SUFFIX = ".corrupt"

Entry = Tuple[PhotoLocation, Optional[Metadata]]


class Catalog(Protocol):
    """The authoritative mapping from photo location to optional metadata."""

    def store(self, location: PhotoLocation) -> bool: ...

    def contains(self, location: PhotoLocation) -> bool: ...

    def remove(self, location: PhotoLocation) -> bool: ...

    def metadata_exists(self, location: PhotoLocation) -> bool: ...

    def metadata_of(self, location: PhotoLocation) -> Optional[Metadata]: ...

    def replace_metadata(self, location: PhotoLocation, metadata: Metadata) -> None: ...

    def locations(self) -> Iterator[PhotoLocation]: ...

    def size(self) -> int: ...

    def clear(self) -> None: ...


class InMemoryCatalog:
    """
    Catalog held in a dict keyed by PhotoLocation.

    An internal lock keeps single operations atomic so other threads can read
    while a reindex mutates. Iteration works on a sorted snapshot taken when
    iteration starts.
    """

    def __init__(self) -> None:
        self._entries: Dict[PhotoLocation, Optional[Metadata]] = {}
        self._lock = threading.RLock()

    def store(self, location: PhotoLocation) -> bool:
        """Insert location without metadata. Returns False if already present."""
        with self._lock:
            if location in self._entries:
                return False
            self._entries[location] = None
            return True

    def contains(self, location: PhotoLocation) -> bool:
        with self._lock:
            return location in self._entries

    def remove(self, location: PhotoLocation) -> bool:
        with self._lock:
            if location not in self._entries:
                return False
            del self._entries[location]
            return True

    def metadata_exists(self, location: PhotoLocation) -> bool:
        return self.metadata_of(location) is not None

    def metadata_of(self, location: PhotoLocation) -> Optional[Metadata]:
        with self._lock:
            try:
                return self._entries[location]
            except KeyError:
                raise UnknownLocation(location) from None

    def replace_metadata(self, location: PhotoLocation, metadata: Metadata) -> None:
        with self._lock:
            if location not in self._entries:
                raise UnknownLocation(location)
            self._entries[location] = metadata

    def locations(self) -> Iterator[PhotoLocation]:
        with self._lock:
            snapshot = sorted(self._entries)
        return iter(snapshot)

    def entries(self) -> Iterator[Entry]:
        with self._lock:
            snapshot = sorted(self._entries.items(), key=lambda item: item[0])
        return iter(snapshot)

    def replace_all(self, entries: Iterable[Entry]) -> None:
        """Swap the whole content for entries in one step."""
        fresh: Dict[PhotoLocation, Optional[Metadata]] = {}
        for location, metadata in entries:
            fresh[location] = metadata
        with self._lock:
            self._entries = fresh

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, location: object) -> bool:
        return isinstance(location, PhotoLocation) and self.contains(location)


# ── Snapshot codec ────────────────────────────────────────────────────────────

def _instant_to_record(dt: datetime) -> Dict[str, int]:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - datetime(1970, 1, 1, tzinfo=timezone.utc)
    seconds = delta.days * 86400 + delta.seconds
    return {"seconds": seconds, "nanos": delta.microseconds * 1000}


def _instant_from_record(record: Dict[str, Any]) -> datetime:
    seconds = int(record.get("seconds", 0))
    micros = int(record.get("nanos", 0)) // 1000
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=micros)


def metadata_to_record(metadata: Metadata) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    if metadata.file_size is not None:
        record["fileSize"] = metadata.file_size
    exif = metadata.exif
    if exif is not None:
        if exif.fnumber is not None:
            record["fnumber"] = exif.fnumber
        if exif.focal_length is not None:
            record["focalLength"] = exif.focal_length
        if exif.focal_length_full_frame_equivalent is not None:
            record["focalLengthFullFrameEquivalent"] = exif.focal_length_full_frame_equivalent
        if exif.iso is not None:
            record["iso"] = exif.iso
        if exif.taken_at is not None:
            record["takenAt"] = _instant_to_record(exif.taken_at)
    if metadata.image_size is not None:
        record["imageWidth"] = metadata.image_size.width
        record["imageHeight"] = metadata.image_size.height
    record["extractedAt"] = _instant_to_record(metadata.extracted_at)
    return record


def metadata_from_record(record: Dict[str, Any], restored_at: datetime) -> Metadata:
    taken_at = record.get("takenAt")
    exif = ExifFacts(
        fnumber=float(record["fnumber"]) if record.get("fnumber") is not None else None,
        focal_length=record.get("focalLength"),
        focal_length_full_frame_equivalent=record.get("focalLengthFullFrameEquivalent"),
        iso=record.get("iso"),
        taken_at=_instant_from_record(taken_at) if taken_at is not None else None,
    )
    image_size = None
    if record.get("imageWidth") is not None and record.get("imageHeight") is not None:
        image_size = ImageSize(width=record["imageWidth"], height=record["imageHeight"])
    extracted_at = record.get("extractedAt")
    return Metadata(
        file_size=record.get("fileSize"),
        image_size=image_size,
        exif=exif,
        extracted_at=_instant_from_record(extracted_at) if extracted_at is not None else restored_at,
    )


def encode_snapshot(entries: Iterable[Entry]) -> str:
    """
    Serialize entries as a JSON array of [location, metadata-or-null] pairs,
    sorted by path. An empty catalog is written as {}.
    """
    pairs = [
        [{"path": location.path}, metadata_to_record(metadata) if metadata is not None else None]
        for location, metadata in sorted(entries, key=lambda entry: entry[0])
    ]
    if not pairs:
        return EMPTY_SNAPSHOT
    return json.dumps(pairs, separators=(",", ":"), ensure_ascii=False)


def decode_snapshot(text: str, restored_at: Optional[datetime] = None) -> List[Entry]:
    """Parse snapshot text produced by encode_snapshot. Raises ValueError if malformed."""
    if not text.strip():
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        if data:
            raise ValueError("Snapshot must be an array of entries or an empty map.")
        return []
    if not isinstance(data, list):
        raise ValueError(f"Unexpected snapshot root: {type(data).__name__}")

    restored_at = restored_at or datetime.now(timezone.utc)
    entries: List[Entry] = []
    for pair in data:
        if not isinstance(pair, list) or len(pair) != 2:
            raise ValueError(f"Malformed snapshot entry: {pair!r}")
        location_record, metadata_record = pair
        location = PhotoLocation(location_record["path"])
        metadata = (
            metadata_from_record(metadata_record, restored_at)
            if metadata_record is not None else None
        )
        entries.append((location, metadata))
    return entries


# ── Persistent catalog ────────────────────────────────────────────────────────

class PersistedCatalog:
    """
    In-memory catalog backed by a gzip-compressed JSON snapshot file.

    Every catalog operation is delegated; flush() and restore() move the whole
    content to and from snapshot_path. They are not synchronised with a
    running reindex; go through Library.save()/load() for that.
    """

    def __init__(self, snapshot_path: Path) -> None:
        self._path = Path(snapshot_path)
        self._delegate = InMemoryCatalog()

    @property
    def snapshot_path(self) -> Path:
        return self._path

    def store(self, location: PhotoLocation) -> bool:
        return self._delegate.store(location)

    def contains(self, location: PhotoLocation) -> bool:
        return self._delegate.contains(location)

    def remove(self, location: PhotoLocation) -> bool:
        return self._delegate.remove(location)

    def metadata_exists(self, location: PhotoLocation) -> bool:
        return self._delegate.metadata_exists(location)

    def metadata_of(self, location: PhotoLocation) -> Optional[Metadata]:
        return self._delegate.metadata_of(location)

    def replace_metadata(self, location: PhotoLocation, metadata: Metadata) -> None:
        self._delegate.replace_metadata(location, metadata)

    def locations(self) -> Iterator[PhotoLocation]:
        return self._delegate.locations()

    def entries(self) -> Iterator[Entry]:
        return self._delegate.entries()

    def size(self) -> int:
        return self._delegate.size()

    def clear(self) -> None:
        self._delegate.clear()

    def __len__(self) -> int:
        return self._delegate.size()

    def __contains__(self, location: object) -> bool:
        return location in self._delegate

    def flush(self) -> None:
        """
        Atomically write the snapshot.
        Writes to a .tmp file first, then renames to avoid corruption.
        """
        payload = encode_snapshot(self._delegate.entries()).encode("utf-8")
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(tmp_path, "wb") as f:
            f.write(payload)
        os.replace(tmp_path, self._path)
        logger.debug("Flushed {} entries to {}", self._delegate.size(), self._path)

    def restore(self) -> None:
        """Replace the content with the snapshot; a missing snapshot yields an empty catalog."""
        if not self._path.exists():
            self._delegate.clear()
            return
        try:
            with gzip.open(self._path, "rb") as f:
                text = f.read().decode("utf-8")
            entries = decode_snapshot(text)
        except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            # Corrupted snapshot: set it aside and start fresh, the next reindex rebuilds it
            logger.warning("Ignoring unreadable snapshot {}: {}", self._path, e)
            self._set_aside_corrupt_snapshot()
            self._delegate.clear()
            return
        self._delegate.replace_all(entries)
        logger.debug("Restored {} entries from {}", len(entries), self._path)

    def _set_aside_corrupt_snapshot(self) -> None:
        backup = self._path.with_name(self._path.name + CORRUPT_SUFFIX)
        try:
            os.replace(self._path, backup)
        except OSError as e:
            logger.warning("Could not move unreadable snapshot {} aside: {}", self._path, e)
            return
        logger.warning("Moved unreadable snapshot to {}", backup)

    @staticmethod
    def snapshot_path_for(data_dir: Path) -> Path:
        return Path(data_dir) / SNAPSHOT_FILENAME
