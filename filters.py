"""
File-acceptance predicates for the filesystem scanner.

A filter is any callable taking the absolute path of a scanned file and
returning True when the file belongs in the catalog.

Exclude patterns support:
  thumbs          — matches any directory or file named exactly 'thumbs'
  *.xmp           — matches any file with that extension (fnmatch style)
  .xmp            — shorthand for *.xmp (leading dot, no *)
  PRIVATE/        — trailing slash restricts the match to directory names
"""

import fnmatch
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set


FileFilter = Callable[[Path], bool]

IMAGE_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif",
    ".heic", ".heif", ".webp", ".raw", ".cr2", ".nef", ".arw", ".dng",
}


def accept_all(path: Path) -> bool:
    return True


def is_image_file(path: Path) -> bool:
    """Return True if the file extension is a known image format."""
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


class ExcludePatterns:
    """
    Rejects files matching any pattern. Directory patterns are matched against
    the components between root and the file, so the location of the library
    itself never triggers an exclusion.
    """

    def __init__(self, patterns: Iterable[str], root: Optional[Path] = None) -> None:
        self._root = Path(root) if root is not None else None
        self._dir_patterns: List[str] = []
        self._name_patterns: List[str] = []
        self._ext_set: Set[str] = set()

        for raw in patterns:
            p = raw.strip()
            if not p or p.startswith("#"):
                continue

            dir_only = p.endswith("/")
            p = p.rstrip("/")

            if p.startswith(".") and "*" not in p and not dir_only:
                self._ext_set.add(p.lower())
            elif p.startswith("*.") and "/" not in p and not dir_only:
                self._ext_set.add(p[1:].lower())
            elif dir_only:
                self._dir_patterns.append(p)
            else:
                self._dir_patterns.append(p)
                self._name_patterns.append(p)

    def is_empty(self) -> bool:
        return not (self._dir_patterns or self._name_patterns or self._ext_set)

    def excludes(self, path: Path) -> bool:
        path = Path(path)
        if path.suffix.lower() in self._ext_set:
            return True
        if any(fnmatch.fnmatch(path.name, p) for p in self._name_patterns):
            return True
        parent = path.parent
        if self._root is not None and parent.is_relative_to(self._root):
            parent = parent.relative_to(self._root)
        return any(
            fnmatch.fnmatch(part, p)
            for part in parent.parts
            for p in self._dir_patterns
        )

    def __call__(self, path: Path) -> bool:
        return not self.excludes(path)


def exclude_patterns(patterns: Iterable[str], root: Optional[Path] = None) -> FileFilter:
    return ExcludePatterns(patterns, root=root)


def all_of(*filters: FileFilter) -> FileFilter:
    """Combine filters; a file is accepted only if every filter accepts it."""
    def _combined(path: Path) -> bool:
        return all(f(path) for f in filters)
    return _combined
