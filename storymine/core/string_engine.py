from __future__ import annotations

import dataclasses
import re
from pathlib import Path
from typing import Callable, Iterator, List, NamedTuple, Optional, Set, Tuple

import numpy as np

from storymine.core.cancellation import CancellationToken
from storymine.core.config import ExtractionConfig
from storymine.core.errors import DecodeFailure
from storymine.core.models import DecodedTextFragment, ExtractionUnit
from storymine.core.text_rules import contains_cjk, is_plausible_text
from storymine.infra.filesystem import iter_chunks
from storymine.infra.logging_utils import LOGGER

UTF8 = "UTF-8"
UTF16LE = "UTF-16LE"
UTF16BE = "UTF-16BE"
SHIFT_JIS = "Shift-JIS"

BOMS: Tuple[Tuple[bytes, str, str], ...] = (
    (b"\xef\xbb\xbf", "utf-8", UTF8),
    (b"\xff\xfe\x00\x00", "utf-32-le", "UTF-32LE"),
    (b"\x00\x00\xfe\xff", "utf-32-be", "UTF-32BE"),
    (b"\xff\xfe", "utf-16-le", UTF16LE),
    (b"\xfe\xff", "utf-16-be", UTF16BE),
)
STRUCTURED_PREFIXES = ("{", "[", "<", "---")

UTF8_RUN = re.compile(rb"[\t\n\r\x20-\x7e\x80-\xf7]+")
SHIFT_JIS_RUN = re.compile(rb"(?:[\t\n\r\x20-\x7e]|[\xa1-\xdf]|[\x81-\x9f\xe0-\xef][\x40-\x7e\x80-\xfc])+")
ASCII_ONLY = re.compile(rb"[\t\n\r\x20-\x7e]+")

UTF16_DTYPES = {UTF16LE: ("<u2", "utf-16-le"), UTF16BE: (">u2", "utf-16-be")}
UTF16_PRINTABLE_RANGES = (
    (0x20, 0x7E),
    (0x3000, 0x9FFF),  # CJK symbols, kana, ideographs
    (0xAC00, 0xD7AF),  # hangul
    (0xFF00, 0xFFEF),  # fullwidth forms
)

CANCEL_CHECK_INTERVAL = 512


class TextRun(NamedTuple):
    text: str
    codec: str
    offset: int
    length: int


def _decode(data: bytes, codec: str) -> str:
    try:
        return data.decode(codec)
    except UnicodeDecodeError as exc:
        raise DecodeFailure(f"{codec}: {exc.reason}") from exc


def sniff_encoding(data: bytes) -> Optional[Tuple[str, str]]:
    for bom, codec, label in BOMS:
        if data.startswith(bom):
            try:
                return label, _decode(data[len(bom):], codec)
            except DecodeFailure:
                return None
    for codec, label in (("utf-8", UTF8), ("cp932", SHIFT_JIS)):
        try:
            text = _decode(data, codec)
        except DecodeFailure:
            continue
        if label == SHIFT_JIS and not contains_cjk(text):
            return None
        return label, text
    return None


def utf8_runs(data: bytes) -> Iterator[TextRun]:
    for match in UTF8_RUN.finditer(data):
        raw = match.group(0)
        yield TextRun(raw.decode("utf-8", errors="replace"), UTF8, match.start(), len(raw))


def shift_jis_runs(data: bytes) -> Iterator[TextRun]:
    for match in SHIFT_JIS_RUN.finditer(data):
        raw = match.group(0)
        if ASCII_ONLY.fullmatch(raw):
            continue
        yield TextRun(raw.decode("cp932", errors="replace"), SHIFT_JIS, match.start(), len(raw))


def utf16_runs(data: bytes, label: str) -> Iterator[TextRun]:
    dtype, codec = UTF16_DTYPES[label]
    unit_count = len(data) // 2
    if unit_count == 0:
        return
    units = np.frombuffer(data, dtype=dtype, count=unit_count)
    mask = (units == 0x09) | (units == 0x0A) | (units == 0x0D)
    for low, high in UTF16_PRINTABLE_RANGES:
        mask |= (units >= low) & (units <= high)
    edges = np.flatnonzero(np.diff(np.concatenate(([0], mask.astype(np.int8), [0]))))
    for start, end in zip(edges[0::2].tolist(), edges[1::2].tolist()):
        raw = data[start * 2:end * 2]
        # 8-bit text read two bytes at a time
        if ASCII_ONLY.fullmatch(raw):
            continue
        yield TextRun(raw.decode(codec, errors="replace"), label, start * 2, len(raw))


class StringExtractionEngine:
    def extract(
        self,
        data: bytes,
        source_id: str,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> List[DecodedTextFragment]:
        token = token or CancellationToken()
        whole = self._structured_document(data, config)
        if whole is not None:
            return [whole]

        accepted: List[DecodedTextFragment] = []
        cap = config.max_fragments_per_buffer
        for scan in self._scanners(config):
            token.raise_if_cancelled()
            for index, run in enumerate(scan(data)):
                if index % CANCEL_CHECK_INTERVAL == 0:
                    token.raise_if_cancelled()
                fragment = self._accept(run, config)
                if fragment is None:
                    continue
                accepted.append(fragment)
                if len(accepted) >= cap:
                    LOGGER.debug("Fragment cap reached", extra={"extra_data": {"source": source_id, "cap": cap}})
                    return self._order(accepted, config)
        return self._order(accepted, config)

    def extract_unit(
        self,
        unit: ExtractionUnit,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> List[DecodedTextFragment]:
        fragments = self.extract(unit.data, unit.source_id, config, token)
        if not unit.base_offset:
            return fragments
        return [dataclasses.replace(f, offset=f.offset + unit.base_offset) for f in fragments]

    def iter_units(
        self,
        path: Path,
        size: int,
        config: ExtractionConfig,
        token: Optional[CancellationToken] = None,
    ) -> Iterator[ExtractionUnit]:
        token = token or CancellationToken()
        if not config.use_streaming or size <= config.streaming_threshold_bytes:
            token.raise_if_cancelled()
            yield ExtractionUnit(data=path.read_bytes(), path=path)
            return
        for index, (offset, chunk) in enumerate(iter_chunks(path, config.streaming_chunk_size_bytes)):
            token.raise_if_cancelled()
            if index >= config.max_chunks_per_file:
                LOGGER.warning(
                    "Chunk ceiling reached",
                    extra={"extra_data": {"path": str(path), "max_chunks": config.max_chunks_per_file}},
                )
                return
            yield ExtractionUnit(data=chunk, path=path, chunk_index=index, base_offset=offset)

    @staticmethod
    def exceeds_chunk_ceiling(size: int, config: ExtractionConfig) -> bool:
        if not config.use_streaming or size <= config.streaming_threshold_bytes:
            return False
        return size > config.streaming_chunk_size_bytes * config.max_chunks_per_file

    def _structured_document(self, data: bytes, config: ExtractionConfig) -> Optional[DecodedTextFragment]:
        sniffed = sniff_encoding(data)
        if sniffed is None:
            return None
        label, text = sniffed
        stripped = text.strip()
        if not stripped.startswith(STRUCTURED_PREFIXES):
            return None
        if not is_plausible_text(stripped, config.min_text_length, config.max_text_length):
            return None
        return DecodedTextFragment(text=stripped, codec=label, offset=0, length=len(data))

    def _scanners(self, config: ExtractionConfig) -> List[Callable[[bytes], Iterator[TextRun]]]:
        scanners: List[Callable[[bytes], Iterator[TextRun]]] = [
            utf8_runs,
            lambda data: utf16_runs(data, UTF16LE),
            lambda data: utf16_runs(data, UTF16BE),
        ]
        if config.prioritize_cjk_text:
            scanners.append(shift_jis_runs)
        return scanners

    def _accept(self, run: TextRun, config: ExtractionConfig) -> Optional[DecodedTextFragment]:
        if not is_plausible_text(run.text, config.min_text_length, config.max_text_length):
            return None
        text = run.text.strip()
        if run.codec == SHIFT_JIS and not contains_cjk(text):
            return None
        return DecodedTextFragment(text=text, codec=run.codec, offset=run.offset, length=run.length)

    def _order(self, fragments: List[DecodedTextFragment], config: ExtractionConfig) -> List[DecodedTextFragment]:
        seen: Set[str] = set()
        unique: List[DecodedTextFragment] = []
        for fragment in fragments:
            if fragment.text in seen:
                continue
            seen.add(fragment.text)
            unique.append(fragment)
        if config.prioritize_cjk_text:
            unique.sort(key=lambda f: (not contains_cjk(f.text), -len(f.text)))
        return unique
