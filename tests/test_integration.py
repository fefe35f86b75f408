"""
Integration tests — end-to-end runs through catalog.run and catalog.main with
real image files, the real metadata reader and the on-disk snapshot.
"""
import gzip
import json
from pathlib import Path

import pytest

import catalog
from catalog import build_parser, main, run
from catalog_store import SNAPSHOT_FILENAME
from filters import ExcludePatterns
from models import ImageSize, PhotoLocation
from scanner import DEFAULT_MAX_DEPTH
from tests.conftest import make_file, make_image


def _snapshot(data_dir: Path):
    with gzip.open(data_dir / SNAPSHOT_FILENAME, "rb") as f:
        return json.loads(f.read().decode("utf-8"))


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr(catalog, "init_logging", lambda verbose=False, log_dir=None: None)


# ── Pipeline ──────────────────────────────────────────────────────────────────

class TestRun:
    def test_catalogs_images_and_writes_snapshot(self, root, tmp_path):
        make_image(root / "a.jpg", size=(8, 6))
        make_image(root / "2024" / "b.png", size=(2, 2))
        make_file(root / "notes.txt")
        data_dir = tmp_path / "data"

        summary, library = run(root, data_dir, use_progress=False)

        assert summary.files_discovered == 2
        assert summary.metadata_refreshed == 2
        assert list(library.photos()) == [PhotoLocation("2024/b.png"), PhotoLocation("a.jpg")]
        assert library.metadata_of(PhotoLocation("a.jpg")).image_size == ImageSize(8, 6)
        assert [pair[0]["path"] for pair in _snapshot(data_dir)] == ["2024/b.png", "a.jpg"]

    def test_all_files_includes_non_images(self, root, tmp_path):
        make_image(root / "a.jpg")
        make_file(root / "notes.txt", b"text")
        summary, library = run(root, tmp_path / "data", all_files=True, use_progress=False)
        assert summary.files_discovered == 2
        assert summary.metadata_failed == 1
        assert library.metadata_of(PhotoLocation("notes.txt")) is None

    def test_unreadable_image_recorded_not_raised(self, root, tmp_path):
        make_image(root / "good.jpg")
        make_file(root / "broken.jpg", b"not really a jpeg")
        summary, library = run(root, tmp_path / "data", use_progress=False)
        assert summary.metadata_refreshed == 1
        assert summary.metadata_failed == 1
        assert summary.errors[0][0] == "broken.jpg"
        assert library.size() == 2

    def test_snapshot_inside_root_is_not_cataloged(self, root):
        make_image(root / "a.jpg")
        run(root, root, use_progress=False)
        summary, library = run(root, root, all_files=True, use_progress=False)
        assert (root / SNAPSHOT_FILENAME).exists()
        assert list(library.photos()) == [PhotoLocation("a.jpg")]

    def test_excludes(self, root, tmp_path):
        make_image(root / "a.jpg")
        make_image(root / ".thumbnails" / "a.jpg")
        _, library = run(root, tmp_path / "data", excludes=[".thumbnails/"], use_progress=False)
        assert list(library.photos()) == [PhotoLocation("a.jpg")]

    def test_second_run_restores_snapshot(self, root, tmp_path):
        make_image(root / "a.jpg")
        data_dir = tmp_path / "data"
        run(root, data_dir, use_progress=False)
        make_image(root / "b.jpg")

        summary, library = run(root, data_dir, use_progress=False)
        assert summary.files_discovered == 2
        assert summary.files_added == 1
        assert library.size() == 2

    def test_prune(self, root, tmp_path):
        make_image(root / "a.jpg")
        gone = make_image(root / "b.jpg")
        data_dir = tmp_path / "data"
        run(root, data_dir, use_progress=False)
        gone.unlink()

        summary, library = run(root, data_dir, prune=True, use_progress=False)
        assert summary.files_pruned == 1
        assert list(library.photos()) == [PhotoLocation("a.jpg")]

    def test_max_depth(self, root, tmp_path):
        make_image(root / "a.jpg")
        make_image(root / "sub" / "b.jpg")
        _, library = run(root, tmp_path / "data", max_depth=1, use_progress=False)
        assert library.size() == 1


# ── CLI ───────────────────────────────────────────────────────────────────────

class TestCli:
    def test_parser_defaults(self):
        args = build_parser().parse_args(["/photos"])
        assert args.root == "/photos"
        assert args.data_dir is None
        assert args.max_depth == DEFAULT_MAX_DEPTH
        assert not args.force
        assert not args.prune
        assert args.exclude == []

    def test_epilog_exclude_example_skips_thumbnail_directory(self, root):
        epilog = build_parser().epilog
        assert "--exclude .thumbnails/ " in epilog
        example = ExcludePatterns([".thumbnails/", "*.xmp"], root=root)
        assert example.excludes(root / ".thumbnails" / "a.jpg")
        assert not example.excludes(root / "a.jpg")

    def test_main_prints_summary(self, root, tmp_path, capsys, quiet_logging):
        make_image(root / "a.jpg")
        data_dir = tmp_path / "data"
        code = main([str(root), "--data-dir", str(data_dir), "--no-progress"])
        out = capsys.readouterr().out
        assert code == 0
        assert "Photo Catalog Summary" in out
        assert "1 photos cataloged" in out
        assert (data_dir / SNAPSHOT_FILENAME).exists()

    def test_main_defaults_data_dir_to_root(self, root, quiet_logging):
        make_image(root / "a.jpg")
        assert main([str(root), "--no-progress"]) == 0
        assert (root / SNAPSHOT_FILENAME).exists()

    def test_main_rejects_missing_root(self, tmp_path, quiet_logging):
        with pytest.raises(SystemExit) as excinfo:
            main([str(tmp_path / "missing")])
        assert excinfo.value.code == 2

    def test_main_rejects_non_positive_depth(self, root, quiet_logging):
        with pytest.raises(SystemExit):
            main([str(root), "--max-depth", "0"])

    def test_main_survives_symlink_loop_in_library(self, root, tmp_path, quiet_logging):
        make_image(root / "a.jpg")
        (root / "loop.jpg").symlink_to("loop.jpg")
        assert main([str(root), "--data-dir", str(tmp_path / "data"), "--no-progress"]) == 0
