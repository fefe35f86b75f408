"""
Errors raised by the photo catalog.

UnknownLocation and InvalidConfiguration are programming errors. ScanFailure
aborts one reindex cycle; MetadataUnreadable is scoped to a single file and
never escapes a reindex.
"""
from pathlib import Path
from typing import Optional


class CatalogError(Exception):
    """Base class for every error raised by this package."""


class UnknownLocation(CatalogError, LookupError):
    def __init__(self, location) -> None:
        self.location = location
        super().__init__(f"Catalog does not contain '{location}'.")


class ScanFailure(CatalogError):
    def __init__(self, root: Path, cause: Optional[BaseException] = None) -> None:
        self.root = root
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Scanning {root} failed{detail}")


class MetadataUnreadable(CatalogError):
    def __init__(self, path: Path, cause: Optional[BaseException] = None) -> None:
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to read metadata of '{path}'{detail}")


class InvalidConfiguration(CatalogError, ValueError):
    pass


class ReindexInProgress(CatalogError):
    pass
