from __future__ import annotations

import dataclasses
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from storymine.core import format_detector
from storymine.core.errors import ScanIoError
from storymine.core.models import UNKNOWN_VERSION, CatalogEntry, FileKind
from storymine.infra.logging_utils import LOGGER

EXCLUDED_DIRECTORIES = frozenset({"Mono", "MonoBleedingEdge", "il2cpp_data", "Plugins"})
VERSION_CANDIDATES = ("globalgamemanagers", "data.unity3d", "mainData", "level0")
VERSION_PATTERN = re.compile(r"\d{4}\.\d+\.\d+[a-z]\d+")
VERSION_PROBE_BYTES = 4096


class AssetCatalogScanner:
    def scan(self, root: Path) -> CatalogEntry:
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Scan root {root} is not a directory")
        tree = self._scan_directory(root)
        if tree is None:
            tree = CatalogEntry(path=root, name=root.name, is_directory=True, kind=FileKind.DIRECTORY)
        linked = link_resource_streams(tree)
        LOGGER.info(
            "Catalog scan finished",
            extra={"extra_data": {"root": str(root), "files": sum(1 for _ in linked.iter_files())}},
        )
        return linked

    def scan_file(self, path: Path) -> CatalogEntry:
        path = Path(path)
        entry = _file_entry(path, path.stat().st_size)
        if entry.kind.is_container:
            sidecar = _find_sidecar(path)
            if sidecar is not None:
                entry = dataclasses.replace(entry, linked_stream=_file_entry(sidecar, sidecar.stat().st_size))
        return entry

    def _scan_directory(self, directory: Path) -> Optional[CatalogEntry]:
        try:
            items = _list_directory(directory)
        except ScanIoError as exc:
            LOGGER.warning("Skipping unreadable directory", extra={"extra_data": {"path": str(directory), "error": str(exc)}})
            return None
        subdirs: List[CatalogEntry] = []
        files: List[CatalogEntry] = []
        for item in items:
            try:
                if item.is_dir(follow_symlinks=False):
                    if item.name in EXCLUDED_DIRECTORIES:
                        continue
                    child = self._scan_directory(Path(item.path))
                    if child is not None:
                        subdirs.append(child)
                elif item.is_file() and format_detector.is_supported_name(item.name):
                    files.append(_file_entry(Path(item.path), item.stat().st_size))
            except OSError as exc:
                LOGGER.warning("Unable to stat entry", extra={"extra_data": {"path": item.path, "error": str(exc)}})
        children = tuple(subdirs + files)
        if not children:
            return None
        return CatalogEntry(
            path=directory,
            name=directory.name,
            is_directory=True,
            kind=FileKind.DIRECTORY,
            children=children,
        )

    def detect_runtime_version(self, root: Path) -> str:
        root = Path(root)
        for candidate in VERSION_CANDIDATES:
            path = root / candidate
            if not path.is_file():
                continue
            try:
                with path.open("rb") as f:
                    head = f.read(VERSION_PROBE_BYTES)
            except OSError as exc:
                LOGGER.debug("Version probe failed", extra={"extra_data": {"path": str(path), "error": str(exc)}})
                continue
            # only the first readable candidate is consulted
            for encoding in ("ascii", "utf-8"):
                match = VERSION_PATTERN.search(head.decode(encoding, errors="replace"))
                if match:
                    LOGGER.debug("Runtime version detected", extra={"extra_data": {"version": match.group(0)}})
                    return match.group(0)
            return UNKNOWN_VERSION
        return UNKNOWN_VERSION


def _list_directory(directory: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)
    except OSError as exc:
        raise ScanIoError(exc.errno, exc.strerror, str(directory)) from exc


def _file_entry(path: Path, size: int) -> CatalogEntry:
    return CatalogEntry(
        path=path,
        name=path.name,
        is_directory=False,
        kind=format_detector.classify_name(path.name),
        size=size,
    )


def _sidecar_key(path: Path) -> str:
    return str(path.parent / (path.stem + ".resS")).lower()


def _find_sidecar(path: Path) -> Optional[Path]:
    key = _sidecar_key(path)
    try:
        siblings = sorted(path.parent.iterdir())
    except OSError:
        return None
    for sibling in siblings:
        if sibling.is_file() and str(sibling).lower() == key:
            return sibling
    return None


def link_resource_streams(root: CatalogEntry) -> CatalogEntry:
    streams: Dict[str, CatalogEntry] = {}
    for entry in root.iter_files():
        if entry.kind == FileKind.RESOURCE_STREAM:
            streams.setdefault(str(entry.path).lower(), entry)

    def relink(entry: CatalogEntry) -> CatalogEntry:
        if entry.is_directory:
            return dataclasses.replace(entry, children=tuple(relink(child) for child in entry.children))
        if entry.kind.is_container:
            stream = streams.get(_sidecar_key(entry.path))
            if stream is not None:
                return dataclasses.replace(entry, linked_stream=stream)
        return entry

    return relink(root)
