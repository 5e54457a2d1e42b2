import os
from pathlib import Path

import pytest

from storymine.core.catalog_scanner import AssetCatalogScanner
from storymine.core.models import UNKNOWN_VERSION, FileKind


def _build_game_dir(root: Path) -> Path:
    data = root / "Game_Data"
    (data / "Managed").mkdir(parents=True)
    (data / "Mono").mkdir()
    (data / "empty").mkdir()
    (data / "sharedassets0.assets").write_bytes(b"container")
    (data / "sharedassets0.resS").write_bytes(b"stream")
    (data / "level0").write_bytes(b"level")
    (data / "globalgamemanagers").write_bytes(b"\x00\x002021.3.15f1\x00\x00")
    (data / "notes.txt").write_text("ignored")
    (data / "Managed" / "Assembly-CSharp.dll").write_bytes(b"MZ")
    (data / "Mono" / "mono.dll").write_bytes(b"MZ")
    return data


def test_scan_filters_and_links(tmp_path: Path) -> None:
    data = _build_game_dir(tmp_path)
    catalog = AssetCatalogScanner().scan(data)
    names = sorted(entry.name for entry in catalog.iter_files())
    assert names == [
        "Assembly-CSharp.dll",
        "globalgamemanagers",
        "level0",
        "sharedassets0.assets",
        "sharedassets0.resS",
    ]
    child_dirs = [c.name for c in catalog.children if c.is_directory]
    assert child_dirs == ["Managed"]
    linked = [e for e in catalog.iter_files() if e.linked_stream is not None]
    assert len(linked) == 1
    assert linked[0].name == "sharedassets0.assets"
    assert linked[0].linked_stream.kind == FileKind.RESOURCE_STREAM
    assert linked[0].linked_stream.name == "sharedassets0.resS"


def test_sidecar_link_is_case_insensitive(tmp_path: Path) -> None:
    (tmp_path / "Story.assets").write_bytes(b"container")
    (tmp_path / "story.RESS").write_bytes(b"stream")
    catalog = AssetCatalogScanner().scan(tmp_path)
    containers = [e for e in catalog.iter_files() if e.kind == FileKind.SERIALIZED_CONTAINER]
    assert len(containers) == 1
    assert containers[0].linked_stream is not None
    assert containers[0].linked_stream.name == "story.RESS"


def test_scan_is_idempotent(tmp_path: Path) -> None:
    data = _build_game_dir(tmp_path)
    scanner = AssetCatalogScanner()
    assert scanner.scan(data) == scanner.scan(data)


def test_scan_skips_unreadable_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data = _build_game_dir(tmp_path)
    real_scandir = os.scandir

    def guarded(path):
        if Path(path).name == "Managed":
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", guarded)
    catalog = AssetCatalogScanner().scan(data)
    names = {entry.name for entry in catalog.iter_files()}
    assert "Assembly-CSharp.dll" not in names
    assert "level0" in names


def test_scan_file_links_sibling(tmp_path: Path) -> None:
    (tmp_path / "a.assets").write_bytes(b"main")
    (tmp_path / "a.resS").write_bytes(b"side")
    entry = AssetCatalogScanner().scan_file(tmp_path / "a.assets")
    assert entry.size == 4
    assert entry.linked_stream is not None
    assert entry.linked_stream.path == tmp_path / "a.resS"


def test_missing_root_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        AssetCatalogScanner().scan(tmp_path / "missing")


def test_detect_runtime_version(tmp_path: Path) -> None:
    data = _build_game_dir(tmp_path)
    scanner = AssetCatalogScanner()
    assert scanner.detect_runtime_version(data) == "2021.3.15f1"
    assert scanner.detect_runtime_version(tmp_path) == UNKNOWN_VERSION


def test_detect_runtime_version_uses_later_candidate_when_earlier_missing(tmp_path: Path) -> None:
    (tmp_path / "level0").write_bytes(b"junk 2019.4.40f1 junk")
    assert AssetCatalogScanner().detect_runtime_version(tmp_path) == "2019.4.40f1"


def test_detect_runtime_version_stops_at_first_present_candidate(tmp_path: Path) -> None:
    (tmp_path / "globalgamemanagers").write_bytes(b"no version string here")
    (tmp_path / "level0").write_bytes(b"junk 2019.4.40f1 junk")
    assert AssetCatalogScanner().detect_runtime_version(tmp_path) == UNKNOWN_VERSION
