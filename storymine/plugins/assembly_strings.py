from __future__ import annotations

import struct
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from storymine.core.cancellation import CancellationToken
from storymine.core.config import ExtractionConfig
from storymine.core.models import DecodedTextFragment, ExtractionUnit
from storymine.core.string_engine import UTF16LE, utf16_runs
from storymine.core.text_rules import is_plausible_text
from storymine.infra.logging_utils import LOGGER
from storymine.plugins.base import SourceKind, SourceParser

METADATA_SIGNATURE = b"BSJB"
USER_STRINGS_STREAM = "#US"

CODE_PREFIXES = ("System.", "UnityEngine.", "get_", "set_", "http://", "https://", "//", "/*")
CODE_SUFFIXES = (".dll", ".exe")

Decompiler = Callable[[Path], Iterable[str]]


def is_code_string(text: str) -> bool:
    if text.startswith(CODE_PREFIXES) or text.endswith(CODE_SUFFIXES):
        return True
    if all(c.isupper() or c == "_" for c in text):
        return True
    if "Exception" in text:
        return True
    return "{0}" in text and " " not in text


def _read_compressed_length(heap: bytes, pos: int) -> Optional[Tuple[int, int]]:
    first = heap[pos]
    if first & 0x80 == 0:
        return first, 1
    if first & 0xC0 == 0x80 and pos + 1 < len(heap):
        return ((first & 0x3F) << 8) | heap[pos + 1], 2
    if first & 0xE0 == 0xC0 and pos + 3 < len(heap):
        rest = heap[pos + 1:pos + 4]
        return ((first & 0x1F) << 24) | (rest[0] << 16) | (rest[1] << 8) | rest[2], 4
    return None


def locate_user_strings(data: bytes) -> Optional[Tuple[int, int]]:
    root = data.find(METADATA_SIGNATURE)
    if root < 0:
        return None
    try:
        (version_length,) = struct.unpack_from("<I", data, root + 12)
        cursor = root + 16 + version_length + 2
        (stream_count,) = struct.unpack_from("<H", data, cursor)
        cursor += 2
        for _ in range(stream_count):
            offset, size = struct.unpack_from("<II", data, cursor)
            cursor += 8
            terminator = data.index(b"\x00", cursor)
            name = data[cursor:terminator].decode("ascii", errors="replace")
            cursor += (terminator - cursor + 4) & ~3
            if name == USER_STRINGS_STREAM:
                start = root + offset
                if start + size > len(data):
                    return None
                return start, size
    except (struct.error, ValueError):
        return None
    return None


def iter_user_strings(data: bytes, start: int, size: int) -> Iterator[Tuple[int, int, str]]:
    heap = data[start:start + size]
    pos = 1
    while pos < len(heap):
        parsed = _read_compressed_length(heap, pos)
        if parsed is None:
            return
        length, header = parsed
        pos += header
        if length == 0:
            continue
        blob = heap[pos:pos + length]
        if len(blob) < length:
            return
        chars = blob[:-1] if length % 2 else blob
        yield start + pos, length, chars.decode("utf-16-le", errors="replace")
        pos += length


class ProgramAssemblySource(SourceParser):
    name = "program_assembly"
    kind = SourceKind.PROGRAM_ASSEMBLY

    def __init__(self, decompiler: Optional[Decompiler] = None) -> None:
        self.decompiler = decompiler

    def enabled(self, config: ExtractionConfig) -> bool:
        return config.extract_assembly_strings

    def parse(
        self,
        unit: ExtractionUnit,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> List[DecodedTextFragment]:
        token = token or CancellationToken()
        fragments: List[DecodedTextFragment] = []
        located = locate_user_strings(unit.data)
        if located is not None:
            for offset, length, text in iter_user_strings(unit.data, *located):
                self._keep(fragments, text, "UTF-16LE", unit.base_offset + offset, length, config)
        else:
            LOGGER.debug("No managed metadata root", extra={"extra_data": {"source": unit.source_id}})
            for run in utf16_runs(unit.data, UTF16LE):
                self._keep(fragments, run.text, run.codec, unit.base_offset + run.offset, run.length, config)
        token.raise_if_cancelled()
        if self.decompiler is not None and not unit.chunk_index:
            for literal in self.decompiler(unit.path):
                self._keep(fragments, literal, "decompiler", 0, len(literal.encode("utf-8")), config)
        return fragments

    def _keep(
        self,
        fragments: List[DecodedTextFragment],
        text: str,
        codec: str,
        offset: int,
        length: int,
        config: ExtractionConfig,
    ) -> None:
        stripped = text.strip()
        if not is_plausible_text(stripped, config.min_text_length, config.max_text_length):
            return
        if is_code_string(stripped):
            return
        fragments.append(DecodedTextFragment(text=stripped, codec=codec, offset=offset, length=length))
