#!/usr/bin/env python3
"""
photo-catalog: Index a photo folder into a cached catalog of metadata.

Restores the previous snapshot, scans the folder for new photos, extracts
metadata for photos that need it and writes the snapshot back.

Usage:
    python catalog.py ~/Pictures --data-dir ~/.photo-catalog
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from tqdm import tqdm

from catalog_store import SNAPSHOT_FILENAME
from errors import ScanFailure
from filters import accept_all, all_of, exclude_patterns, is_image_file
from library import Library, LibraryConfiguration
from log import init_logging
from models import ReindexSummary
from scanner import DEFAULT_MAX_DEPTH


# ── Output ────────────────────────────────────────────────────────────────────

def print_summary(summary: ReindexSummary, library: Library, snapshot: Path) -> None:
    print("\n" + "=" * 44)
    print("  Photo Catalog Summary")
    print("=" * 44)
    print(f"\nRoot: {summary.root}")
    print(f"  Found     : {summary.files_discovered:>6,} files")
    print(f"  New       : {summary.files_added:>6,} files")
    print(f"  Pruned    : {summary.files_pruned:>6,} files")
    print(f"  Refreshed : {summary.metadata_refreshed:>6,} files")
    print(f"  Errors    : {summary.metadata_failed:>6,} files")
    if summary.errors:
        for path, msg in summary.errors[:20]:
            print(f"    ! {path}: {msg}")
        if len(summary.errors) > 20:
            print(f"    ... and {len(summary.errors) - 20} more errors")
    print(f"  Took      : {summary.elapsed_seconds:.1f}s")

    print(f"\nSnapshot : {snapshot}")
    print(f"Entries  : {library.size():,} photos cataloged")
    print()


# ── Pipeline ──────────────────────────────────────────────────────────────────

def run(
    root: Path,
    data_dir: Path,
    *,
    force: bool = False,
    all_files: bool = False,
    excludes: Optional[List[str]] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
    prune: bool = False,
    use_progress: bool = True,
) -> Tuple[ReindexSummary, Library]:
    """Restore, reindex and flush the library rooted at root."""
    file_filter = accept_all if all_files else is_image_file
    # Never catalog our own snapshot when it lives inside the library
    file_filter = all_of(file_filter, lambda p: not p.name.startswith(SNAPSHOT_FILENAME))
    if excludes:
        file_filter = all_of(file_filter, exclude_patterns(excludes, root=root))

    configuration = LibraryConfiguration(
        root_folder=root,
        file_filter=file_filter,
        max_depth=max_depth,
        prune_missing=prune,
    )
    library = Library.persistent(configuration, data_dir)
    library.load()

    with tqdm(unit="photo", desc=root.name or str(root), ncols=80, disable=not use_progress) as bar:
        def _progress(done: int, total: int) -> None:
            if bar.total != total:
                bar.total = total
                bar.refresh()
            bar.update(done - bar.n)

        summary = library.reindex(force=force, progress=_progress)

    if summary is None:
        raise RuntimeError(f"Library at {root} is already being reindexed.")
    library.save()
    return summary, library


# ── CLI ───────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog.py",
        description=(
            "Index a photo folder into a catalog of file size, image size and "
            "EXIF facts. Metadata is cached in a compressed snapshot so later "
            "runs only read new or incompletely indexed photos."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python catalog.py ~/Pictures\n"
            "  python catalog.py ~/Pictures --data-dir ~/.photo-catalog --prune\n"
            "  python catalog.py /Volumes/NAS/photos --exclude .thumbnails/ '*.xmp' --force\n"
        ),
    )
    parser.add_argument(
        "root",
        metavar="ROOT",
        help="Root folder of the photo library.",
    )
    parser.add_argument(
        "--data-dir",
        metavar="PATH",
        default=None,
        help="Directory holding the catalog snapshot (default: ROOT).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-extract metadata of every photo, not only of stale ones.",
    )
    parser.add_argument(
        "--all-files",
        action="store_true",
        help="Catalog every file instead of known image extensions only.",
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        metavar="PATTERN",
        help="Directory names, file names or extensions to skip.",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        metavar="N",
        help="Do not descend more than N directory levels below ROOT.",
    )
    parser.add_argument(
        "--prune",
        action="store_true",
        help="Drop catalog entries whose files no longer exist.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output, including every skipped EXIF value.",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar (useful when piping output to log files).",
    )
    parser.add_argument(
        "--log-dir",
        metavar="PATH",
        default=None,
        help="Also write rotating log files to this directory.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    root = Path(args.root).expanduser().resolve()
    if not root.is_dir():
        parser.error(f"Root is not a directory: {root}")
    if args.max_depth <= 0:
        parser.error(f"--max-depth must be positive: {args.max_depth}")

    data_dir = Path(args.data_dir).expanduser().resolve() if args.data_dir else root
    init_logging(verbose=args.verbose, log_dir=Path(args.log_dir) if args.log_dir else None)

    try:
        summary, library = run(
            root,
            data_dir,
            force=args.force,
            all_files=args.all_files,
            excludes=args.exclude,
            max_depth=args.max_depth,
            prune=args.prune,
            use_progress=not args.no_progress,
        )
    except ScanFailure as e:
        print(f"Scan failed: {e}")
        return 1

    print_summary(summary, library, library.catalog.snapshot_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
