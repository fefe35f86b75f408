import errno
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Generator, List, Optional, Set, Tuple

from loguru import logger

from errors import InvalidConfiguration, ScanFailure
from filters import FileFilter, accept_all


# Effectively unbounded; a real photo tree never gets anywhere near it.
DEFAULT_MAX_DEPTH = sys.maxsize


@dataclass(frozen=True)
class ScanOptions:
    follow_symlinks: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if isinstance(self.max_depth, bool) or not isinstance(self.max_depth, int):
            raise InvalidConfiguration(f"Max depth must be an integer: {self.max_depth!r}")
        if self.max_depth <= 0:
            raise InvalidConfiguration(f"Max depth must be positive: {self.max_depth}")

    def with_follow_symlinks(self, flag: bool) -> "ScanOptions":
        return replace(self, follow_symlinks=flag)

    def with_max_depth(self, max_depth: int) -> "ScanOptions":
        return replace(self, max_depth=max_depth)


class FilesystemScanner:
    """
    Depth-first walk over a directory tree reporting matching regular files.

    Direct children of the root have depth 1; files deeper than
    options.max_depth are not reported. The order of entries inside one
    directory is whatever the filesystem returns.
    """

    def __init__(
        self,
        options: Optional[ScanOptions] = None,
        file_filter: FileFilter = accept_all,
    ) -> None:
        self.options = options if options is not None else ScanOptions()
        self.file_filter = file_filter

    def scan(self, root: Path, visit: Callable[[Path], None]) -> int:
        """
        Call visit(absolute_path) for every matching file below root.
        Returns the number of visited files. Raises ScanFailure on I/O errors;
        files visited before the failure stay visited.
        """
        count = 0
        for file_path in self.iter_files(root):
            visit(file_path)
            count += 1
        return count

    def iter_files(self, root: Path) -> Generator[Path, None, None]:
        root = Path(root).absolute()
        follow = self.options.follow_symlinks

        # Each stack item: (directory, depth of its children, ancestors' ids)
        stack: List[Tuple[Path, int, Set[Tuple[int, int]]]] = [
            (root, 1, {self._dir_id(root, root)})
        ]
        while stack:
            directory, depth, ancestors = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except OSError as e:
                logger.error("Scan of {} failed at {}: {}", root, directory, e)
                raise ScanFailure(root, e) from e

            subdirs: List[Path] = []
            for entry in entries:
                path = Path(entry.path)
                try:
                    if entry.is_symlink() and not follow:
                        continue
                    is_dir = entry.is_dir(follow_symlinks=follow)
                    is_file = not is_dir and entry.is_file(follow_symlinks=follow)
                except OSError as e:
                    if e.errno == errno.ELOOP:
                        logger.warning("Skipping symlink loop at {}", path)
                        continue
                    logger.error("Scan of {} failed at {}: {}", root, path, e)
                    raise ScanFailure(root, e) from e
                if is_dir:
                    if depth < self.options.max_depth:
                        subdirs.append(path)
                    continue
                if not is_file:
                    continue
                if self.file_filter(path):
                    yield path

            # Reversed so that the first listed subdirectory is walked first
            for subdir in reversed(subdirs):
                dir_id = self._dir_id(root, subdir)
                if dir_id in ancestors:
                    logger.warning("Skipping symlink loop at {}", subdir)
                    continue
                stack.append((subdir, depth + 1, ancestors | {dir_id}))

    @staticmethod
    def _dir_id(root: Path, directory: Path) -> Tuple[int, int]:
        try:
            st = directory.stat()
        except OSError as e:
            raise ScanFailure(root, e) from e
        return st.st_dev, st.st_ino
