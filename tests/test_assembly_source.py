import struct
from pathlib import Path
from typing import List

from storymine.core.config import ExtractionConfig
from storymine.core.models import ExtractionUnit
from storymine.plugins.assembly_strings import (
    ProgramAssemblySource,
    is_code_string,
    iter_user_strings,
    locate_user_strings,
)


def _user_string(text: str) -> bytes:
    blob = text.encode("utf-16-le") + b"\x00"
    return bytes([len(blob)]) + blob


def build_assembly(strings: List[str]) -> bytes:
    heap = b"\x00" + b"".join(_user_string(s) for s in strings)
    heap += b"\x00" * ((4 - len(heap) % 4) % 4)
    version = b"v4.0.30319\x00\x00"
    root = b"BSJB" + struct.pack("<HHII", 1, 1, 0, len(version)) + version + struct.pack("<HH", 0, 1)
    heap_offset = len(root) + 8 + 4
    root += struct.pack("<II", heap_offset, len(heap)) + b"#US\x00"
    return b"MZ" + b"\x90" * 126 + root + heap


def test_user_string_heap_is_located() -> None:
    data = build_assembly(["Welcome, traveler!", "get_Name"])
    located = locate_user_strings(data)
    assert located is not None
    texts = [text for _, _, text in iter_user_strings(data, *located)]
    assert texts == ["Welcome, traveler!", "get_Name"]


def test_code_strings_are_rejected(tmp_path: Path) -> None:
    data = build_assembly(
        ["Welcome, traveler!", "System.String", "get_Name", "MAX_HP", "NullReferenceException", "Game over. Try again?"]
    )
    unit = ExtractionUnit(data=data, path=tmp_path / "Assembly-CSharp.dll")
    fragments = ProgramAssemblySource().parse(unit, ExtractionConfig())
    assert [f.text for f in fragments] == ["Welcome, traveler!", "Game over. Try again?"]
    assert all(f.codec == "UTF-16LE" for f in fragments)


def test_falls_back_to_utf16_runs(tmp_path: Path) -> None:
    data = b"\x7fELF\x00\x00" + "Press any key to continue".encode("utf-16-le") + b"\x00\x00"
    unit = ExtractionUnit(data=data, path=tmp_path / "GameAssembly.dll")
    fragments = ProgramAssemblySource().parse(unit, ExtractionConfig())
    assert "Press any key to continue" in [f.text for f in fragments]


def test_external_decompiler_literals(tmp_path: Path) -> None:
    source = ProgramAssemblySource(decompiler=lambda path: ["The king awaits you.", "UnityEngine.Debug"])
    unit = ExtractionUnit(data=b"\x00" * 8, path=tmp_path / "Assembly-CSharp.dll")
    fragments = source.parse(unit, ExtractionConfig())
    assert [f.text for f in fragments] == ["The king awaits you."]


def test_is_code_string() -> None:
    assert is_code_string("https://example.com")
    assert is_code_string("Value{0}")
    assert is_code_string("plugin.dll")
    assert not is_code_string("Score: {0} points")
    assert not is_code_string("こんにちは")
