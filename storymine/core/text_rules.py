from __future__ import annotations

import unicodedata

ALLOWED_CONTROLS = frozenset("\t\n\r")
REPLACEMENT_CHAR = "\ufffd"
MAX_CONTROL_RATIO = 0.1

CJK_RANGES = (
    (0x3040, 0x309F),  # hiragana
    (0x30A0, 0x30FF),  # katakana
    (0x3400, 0x4DBF),
    (0x4E00, 0x9FFF),
    (0xAC00, 0xD7AF),  # hangul
    (0xFF66, 0xFF9F),  # half-width katakana
)


def _in_ranges(char: str, ranges) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in ranges)


def contains_cjk(text: str) -> bool:
    return any(_in_ranges(c, CJK_RANGES) for c in text)


def is_control(char: str) -> bool:
    if char in ALLOWED_CONTROLS:
        return False
    return char == REPLACEMENT_CHAR or unicodedata.category(char) == "Cc"


def control_ratio(text: str) -> float:
    if not text:
        return 0.0
    return sum(1 for c in text if is_control(c)) / len(text)


def is_plausible_text(text: str, min_length: int, max_length: int) -> bool:
    stripped = text.strip()
    if not stripped:
        return False
    if "\x00" in stripped:
        return False
    if len(stripped) < min_length or len(stripped) > max_length:
        return False
    if control_ratio(stripped) > MAX_CONTROL_RATIO:
        return False
    if all(c.isdigit() or c.isspace() for c in stripped):
        return False
    return True


def is_dialogue_like(text: str) -> bool:
    stripped = text.strip()
    if len(stripped) < 2 or "\x00" in stripped:
        return False
    if control_ratio(stripped) > MAX_CONTROL_RATIO:
        return False
    if all(c.isdigit() or c.isspace() for c in stripped):
        return False
    if not any(c.isalnum() for c in stripped):
        return False
    return True
