"""Length-prefixed string array recovery.

Serialized behaviours store string lists as a little-endian int32 element
count followed by ``count`` entries of ``int32 length + UTF-8 bytes``, each
entry padded to a 4-byte boundary. Every byte offset is tried as a possible
array start; numpy only prunes offsets whose count word is out of range, so
the accepted arrays are the same as a plain one-byte-step scan.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from storymine.core.cancellation import CancellationToken
from storymine.core.models import DecodedTextFragment
from storymine.core.text_rules import is_dialogue_like

MAX_ELEMENT_COUNT = 1000
MAX_ELEMENT_BYTES = 10_000
LABEL_WINDOW = 200
CANCEL_CHECK_INTERVAL = 4096

NARRATIVE_FIELD_KEYWORDS = (
    "dialogue",
    "dialog",
    "text",
    "message",
    "story",
    "script",
    "conversation",
    "speech",
    "line",
    "subtitle",
    "caption",
    "content",
    "description",
    "narrative",
    "quote",
    "saying",
    "セリフ",
    "台詞",
    "テキスト",
    "メッセージ",
    "ストーリー",
    "会話",
    "台本",
    "字幕",
    "説明",
    "内容",
)
FIELD_NAME_PATTERN = re.compile(r"([a-zA-Z_][a-zA-Z0-9_]*(?:Text|Dialog|Message|Story|Line|Content))\x00")


@dataclass
class SerializedStringArray:
    offset: int
    declared_count: int
    strings: List[DecodedTextFragment] = field(default_factory=list)
    field_name: Optional[str] = None


def is_narrative_field(name: Optional[str]) -> bool:
    if not name:
        return False
    lower = name.lower()
    return any(keyword.lower() in lower for keyword in NARRATIVE_FIELD_KEYWORDS)


def _candidate_offsets(data: bytes) -> np.ndarray:
    limit = len(data) - 8
    if limit <= 0:
        return np.empty(0, dtype=np.int64)
    raw = np.frombuffer(data, dtype=np.uint8)
    mask = (raw[2:limit + 2] == 0) & (raw[3:limit + 3] == 0)
    low = raw[0:limit].astype(np.uint16) | (raw[1:limit + 1].astype(np.uint16) << 8)
    mask &= (low > 0) & (low < MAX_ELEMENT_COUNT)
    return np.flatnonzero(mask)


def _read_int32(data: bytes, position: int) -> int:
    return int.from_bytes(data[position:position + 4], "little", signed=True)


def _parse_array(data: bytes, position: int, count: int) -> Optional[List[DecodedTextFragment]]:
    end = len(data)
    cursor = position + 4
    strings: List[DecodedTextFragment] = []
    for _ in range(count):
        if cursor >= end - 4:
            return None
        length = _read_int32(data, cursor)
        cursor += 4
        if length < 0 or length > MAX_ELEMENT_BYTES or cursor + length > end:
            return None
        text = data[cursor:cursor + length].decode("utf-8", errors="replace")
        if is_dialogue_like(text):
            strings.append(DecodedTextFragment(text=text.strip(), codec="UTF-8", offset=cursor, length=length))
        cursor += length
        padding = (4 - length % 4) % 4
        if cursor + padding <= end:
            cursor += padding
    return strings


def find_field_name(data: bytes, position: int) -> Optional[str]:
    window = data[max(0, position - LABEL_WINDOW):position].decode("utf-8", errors="replace")
    lower = window.lower()
    for keyword in NARRATIVE_FIELD_KEYWORDS:
        if keyword.lower() in lower:
            return keyword
    match = FIELD_NAME_PATTERN.search(window)
    return match.group(1) if match else None


def find_serialized_string_arrays(
    data: bytes, token: Optional[CancellationToken] = None
) -> List[SerializedStringArray]:
    token = token or CancellationToken()
    arrays: List[SerializedStringArray] = []
    for index, position in enumerate(_candidate_offsets(data).tolist()):
        if index % CANCEL_CHECK_INTERVAL == 0:
            token.raise_if_cancelled()
        count = _read_int32(data, position)
        strings = _parse_array(data, position, count)
        if strings is None or len(strings) < 2 or len(strings) < count // 2:
            continue
        arrays.append(
            SerializedStringArray(
                offset=position,
                declared_count=count,
                strings=strings,
                field_name=find_field_name(data, position),
            )
        )
    return arrays
