from __future__ import annotations

import struct
from pathlib import Path
from typing import Optional

from storymine.core.models import FileKind, HeaderInfo

BOOTSTRAP_NAMES = frozenset({"globalgamemanagers", "globalgamemanagers.assets"})
RESOURCES_CONTAINER_NAME = "resources.assets"
MAIN_DATA_NAME = "maindata"
SHARED_PREFIX = "sharedassets"
LEVEL_PREFIX = "level"

CONTAINER_EXTENSIONS = frozenset({".assets", ".asset"})
BUNDLE_EXTENSIONS = frozenset({".bundle", ".unity3d", ".ab"})
RESOURCE_STREAM_EXTENSION = ".ress"
ASSEMBLY_EXTENSION = ".dll"

BUNDLE_SIGNATURES = frozenset({"UnityFS", "UnityWeb", "UnityRaw"})

_HEADER = struct.Struct(">iiii")
_HEADER_V22 = struct.Struct(">qqqq")
ENDIANNESS_VERSION = 9
WIDE_HEADER_VERSION = 22


def classify(path: Path) -> FileKind:
    if path.is_dir():
        return FileKind.DIRECTORY
    return classify_name(path.name)


def classify_name(name: str) -> FileKind:
    lower = name.lower()
    suffix = Path(lower).suffix
    if lower in BOOTSTRAP_NAMES:
        return FileKind.BOOTSTRAP_DESCRIPTOR
    if lower == RESOURCES_CONTAINER_NAME:
        return FileKind.SERIALIZED_CONTAINER
    if suffix == RESOURCE_STREAM_EXTENSION:
        return FileKind.RESOURCE_STREAM
    if suffix == ASSEMBLY_EXTENSION:
        return FileKind.PROGRAM_ASSEMBLY
    if suffix in BUNDLE_EXTENSIONS:
        return FileKind.RESOURCE_BUNDLE
    if (
        suffix in CONTAINER_EXTENSIONS
        or lower.startswith(SHARED_PREFIX)
        or lower.startswith(LEVEL_PREFIX)
        or lower == MAIN_DATA_NAME
    ):
        return FileKind.SERIALIZED_CONTAINER
    return FileKind.OTHER


def is_supported_name(name: str) -> bool:
    lower = name.lower()
    if lower in BOOTSTRAP_NAMES or lower == MAIN_DATA_NAME or lower == RESOURCES_CONTAINER_NAME:
        return True
    if lower.startswith(LEVEL_PREFIX) and "." not in lower:
        return True
    if lower.startswith(SHARED_PREFIX) and lower.endswith(".assets"):
        return True
    suffix = Path(lower).suffix
    return (
        suffix in CONTAINER_EXTENSIONS
        or suffix in BUNDLE_EXTENSIONS
        or suffix == RESOURCE_STREAM_EXTENSION
        or suffix == ASSEMBLY_EXTENSION
    )


def validate_container_header(data: bytes) -> HeaderInfo:
    try:
        metadata_size, file_size, version, data_offset = _HEADER.unpack_from(data, 0)
        offset = _HEADER.size
        big_endian = True
        if version >= ENDIANNESS_VERSION:
            big_endian = data[offset] != 0
            if len(data) < offset + 4:
                raise struct.error("truncated endianness block")
            offset += 4
        if version >= WIDE_HEADER_VERSION:
            metadata_size, file_size, data_offset, _unknown = _HEADER_V22.unpack_from(data, offset)
    except (struct.error, IndexError):
        return HeaderInfo(is_valid=False)
    return HeaderInfo(
        is_valid=metadata_size > 0 and file_size > 0,
        metadata_size=metadata_size,
        file_size=file_size,
        format_version=version,
        data_offset=data_offset,
        is_big_endian=big_endian,
    )


def bundle_signature(data: bytes) -> Optional[str]:
    signature = data[:8].rstrip(b"\x00").decode("ascii", errors="replace")
    return signature if signature in BUNDLE_SIGNATURES else None


def is_recognized_container(kind: FileKind, head: bytes) -> bool:
    if bundle_signature(head) is not None:
        return True
    if kind == FileKind.RESOURCE_BUNDLE:
        return False
    return validate_container_header(head).is_valid
