import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional

from loguru import logger

from catalog_store import Catalog
from errors import MetadataUnreadable, ScanFailure, UnknownLocation
from models import PhotoLocation, ReindexSummary
from scanner import FilesystemScanner, ScanOptions

if TYPE_CHECKING:
    from library import LibraryConfiguration


ReindexingNecessaryDecision = Callable[[PhotoLocation, Catalog], bool]
ScannerFactory = Callable[["LibraryConfiguration"], FilesystemScanner]
ProgressCallback = Callable[[int, int], None]


# ── Exclusivity gate ──────────────────────────────────────────────────────────

class ReindexGate:
    """Non-blocking mutual exclusion for reindex cycles: a busy gate means skip, never wait."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_enter(self) -> bool:
        return self._lock.acquire(blocking=False)

    def exit(self) -> None:
        self._lock.release()

    def is_active(self) -> bool:
        return self._lock.locked()


# ── Reindex-necessity policies ────────────────────────────────────────────────

def refresh_if_metadata_or_exif_missing(location: PhotoLocation, catalog: Catalog) -> bool:
    """Re-extract entries never enriched and entries enriched without EXIF facts."""
    metadata = catalog.metadata_of(location)
    return metadata is None or metadata.exif is None


def always_necessary(location: PhotoLocation, catalog: Catalog) -> bool:
    return True


def default_scanner_factory(configuration: "LibraryConfiguration") -> FilesystemScanner:
    options = ScanOptions(follow_symlinks=True, max_depth=configuration.max_depth)
    return FilesystemScanner(options, configuration.file_filter)


# ── Reindexer ─────────────────────────────────────────────────────────────────

class Reindexer:
    """
    Runs one scan-then-enrich cycle over the configured root folder.

    The catalog is borrowed, never owned. All reindexers created for the same
    catalog must share one ReindexGate.
    """

    def __init__(
        self,
        catalog: Catalog,
        gate: ReindexGate,
        configuration: "LibraryConfiguration",
        necessity: Optional[ReindexingNecessaryDecision] = None,
        scanner_factory: Optional[ScannerFactory] = None,
    ) -> None:
        self._catalog = catalog
        self._gate = gate
        self._configuration = configuration
        self._necessity = necessity or refresh_if_metadata_or_exif_missing
        self._scanner_factory = scanner_factory or default_scanner_factory

    @property
    def root(self) -> Path:
        return Path(self._configuration.root_folder)

    def is_reindexing(self) -> bool:
        return self._gate.is_active()

    def with_custom_reindexing_necessary_decision(
        self, decision: ReindexingNecessaryDecision
    ) -> "Reindexer":
        """Return a reindexer sharing catalog, gate and configuration but using decision."""
        return Reindexer(
            self._catalog,
            self._gate,
            self._configuration,
            necessity=decision,
            scanner_factory=self._scanner_factory,
        )

    def reindex(self, progress: Optional[ProgressCallback] = None) -> Optional[ReindexSummary]:
        """
        Scan for new files, then refresh stale metadata.

        Returns None without doing anything if another reindex holds the gate.
        Raises ScanFailure if the walk fails; entries found before the failure
        are kept. Unreadable files are recorded in the summary, never raised.
        """
        if not self._gate.try_enter():
            logger.debug("Reindex of {} already running, skipping", self.root)
            return None

        try:
            started = time.monotonic()
            summary = ReindexSummary(root=str(self.root))
            logger.info("Reindexing library at {} ...", self.root)

            self._check_for_new_photos(summary)
            if self._configuration.prune_missing:
                self._prune_missing_photos(summary)
            self._update_metadata(summary, progress)

            summary.elapsed_seconds = time.monotonic() - started
            logger.info(
                "Library at {} reindexed in {:.1f}s: {} found, {} new, {} refreshed, {} failed",
                self.root,
                summary.elapsed_seconds,
                summary.files_discovered,
                summary.files_added,
                summary.metadata_refreshed,
                summary.metadata_failed,
            )
            return summary
        except ScanFailure as e:
            logger.error("Reindex of {} aborted: {}", self.root, e)
            raise
        finally:
            self._gate.exit()

    def _check_for_new_photos(self, summary: ReindexSummary) -> None:
        root = self.root.absolute()

        def _visit(path: Path) -> None:
            summary.files_discovered += 1
            if self._catalog.store(PhotoLocation.relative_to(root, path)):
                summary.files_added += 1

        self._scanner_factory(self._configuration).scan(root, _visit)

    def _prune_missing_photos(self, summary: ReindexSummary) -> None:
        for location in self._catalog.locations():
            if not location.resolve(self.root).is_file():
                if self._catalog.remove(location):
                    summary.files_pruned += 1
                    logger.debug("Pruned vanished photo {}", location)

    def _photos_with_metadata_to_be_refreshed(self) -> List[PhotoLocation]:
        stale: List[PhotoLocation] = []
        for location in self._catalog.locations():
            try:
                if self._necessity(location, self._catalog):
                    stale.append(location)
            except UnknownLocation:
                # Removed by another thread since locations() was taken
                continue
        return stale

    def _update_metadata(self, summary: ReindexSummary, progress: Optional[ProgressCallback]) -> None:
        reader = self._configuration.metadata_reader_factory()
        stale = self._photos_with_metadata_to_be_refreshed()
        total = len(stale)

        for done, location in enumerate(stale, start=1):
            path = location.resolve(self.root)
            try:
                metadata = reader.read(path)
                self._catalog.replace_metadata(location, metadata)
                summary.metadata_refreshed += 1
            except MetadataUnreadable as e:
                # One unreadable file must not abort the batch
                summary.metadata_failed += 1
                summary.errors.append((location.path, str(e)))
                logger.warning("Failed to read metadata for '{}': {}", location, e)
            except UnknownLocation:
                logger.debug("Photo {} vanished from the catalog during reindex", location)
            if progress is not None:
                progress(done, total)
