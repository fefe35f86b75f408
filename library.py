from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from catalog_store import Catalog, InMemoryCatalog, PersistedCatalog
from errors import ReindexInProgress
from filters import FileFilter, accept_all
from metadata_reader import MetadataReaderFactory, default_metadata_reader_factory
from models import Metadata, PhotoLocation, ReindexSummary
from reindexer import (
    ProgressCallback,
    ReindexGate,
    Reindexer,
    ReindexingNecessaryDecision,
    always_necessary,
)
from scanner import DEFAULT_MAX_DEPTH, ScanOptions


@dataclass(frozen=True)
class LibraryConfiguration:
    root_folder: Path
    file_filter: FileFilter = accept_all
    metadata_reader_factory: MetadataReaderFactory = default_metadata_reader_factory
    max_depth: int = DEFAULT_MAX_DEPTH
    prune_missing: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "root_folder", Path(self.root_folder))
        # Fail on a bad depth now rather than on the first reindex
        ScanOptions(max_depth=self.max_depth)


class Library:
    """
    One photo library: a root folder, the catalog describing it and the gate
    serialising reindex cycles over that catalog.
    """

    def __init__(self, configuration: LibraryConfiguration, catalog: Optional[Catalog] = None) -> None:
        self.configuration = configuration
        self.catalog: Catalog = catalog if catalog is not None else InMemoryCatalog()
        self._gate = ReindexGate()

    @classmethod
    def persistent(cls, configuration: LibraryConfiguration, data_dir: Path) -> "Library":
        """Library backed by the snapshot file in data_dir. Call load() to restore it."""
        return cls(configuration, PersistedCatalog(PersistedCatalog.snapshot_path_for(data_dir)))

    # ── Queries ───────────────────────────────────────────────────────────────

    def photos(self) -> Iterator[PhotoLocation]:
        return self.catalog.locations()

    def size(self) -> int:
        return self.catalog.size()

    def metadata_of(self, location: PhotoLocation) -> Optional[Metadata]:
        return self.catalog.metadata_of(location)

    def is_reindexing(self) -> bool:
        return self._gate.is_active()

    # ── Mutation ──────────────────────────────────────────────────────────────

    def clear(self) -> None:
        self.catalog.clear()

    def create_reindexer(self, necessity: Optional[ReindexingNecessaryDecision] = None) -> Reindexer:
        return Reindexer(self.catalog, self._gate, self.configuration, necessity=necessity)

    def reindex(
        self,
        force: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> Optional[ReindexSummary]:
        """Run one reindex cycle; force re-extracts metadata of every photo."""
        reindexer = self.create_reindexer()
        if force:
            reindexer = reindexer.with_custom_reindexing_necessary_decision(always_necessary)
        return reindexer.reindex(progress=progress)

    # ── Persistence ───────────────────────────────────────────────────────────

    def save(self) -> None:
        """Flush a persisted catalog. Raises ReindexInProgress while a reindex runs."""
        self._with_gate("save", "flush")

    def load(self) -> None:
        """Restore a persisted catalog. Raises ReindexInProgress while a reindex runs."""
        self._with_gate("load", "restore")

    def _with_gate(self, action: str, method: str) -> None:
        operation = getattr(self.catalog, method, None)
        if operation is None:
            logger.debug("Catalog {} is not persistent, nothing to {}", type(self.catalog).__name__, action)
            return
        if not self._gate.try_enter():
            raise ReindexInProgress(f"Cannot {action} the library while it is being reindexed.")
        try:
            operation()
        finally:
            self._gate.exit()
