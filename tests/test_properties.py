from hypothesis import given, settings
from hypothesis import strategies as st

from storymine.core.config import ExtractionConfig
from storymine.core.encryption import EncryptionHeuristics
from storymine.core.format_detector import validate_container_header
from storymine.core.records import find_serialized_string_arrays
from storymine.core.string_engine import StringExtractionEngine
from storymine.core.text_rules import control_ratio

CONFIG = ExtractionConfig(min_text_length=3, max_text_length=200, max_fragments_per_buffer=50)


@settings(deadline=None, max_examples=150)
@given(st.binary(max_size=2048))
def test_fragments_respect_invariants(data: bytes) -> None:
    fragments = StringExtractionEngine().extract(data, "prop", CONFIG)
    assert len(fragments) <= CONFIG.max_fragments_per_buffer
    texts = [f.text for f in fragments]
    assert len(texts) == len(set(texts))
    for fragment in fragments:
        assert CONFIG.min_text_length <= len(fragment.text) <= CONFIG.max_text_length
        assert "\x00" not in fragment.text
        assert control_ratio(fragment.text) <= 0.1
        assert 0 <= fragment.offset <= len(data)


@settings(deadline=None)
@given(st.binary(max_size=128))
def test_header_validation_never_raises(data: bytes) -> None:
    info = validate_container_header(data)
    if len(data) < 16:
        assert not info.is_valid


@settings(deadline=None)
@given(st.binary(max_size=1024))
def test_record_scan_and_decryption_never_raise(data: bytes) -> None:
    for array in find_serialized_string_arrays(data):
        assert len(array.strings) >= 2
    heuristics = EncryptionHeuristics()
    verdict = heuristics.detect_encryption(data)
    assert 0.0 <= verdict.confidence <= 1.0
    assert heuristics.try_decrypt(data).kind == verdict.kind
