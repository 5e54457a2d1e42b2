import base64
import os

import pytest

from storymine.core.encryption import (
    AesDecryptor,
    Base64Decryptor,
    EncryptionHeuristics,
    XorDecryptor,
    guess_xor_key,
)
from storymine.core.errors import CiphertextLengthError, EncryptionKeyError
from storymine.core.models import EncryptionKind
from storymine.infra.crypto import aes_cbc_encrypt


def _record_like_plaintext() -> bytes:
    return bytes(0 if i % 5 in (0, 1) else (i * 7) % 200 + 1 for i in range(1024))


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def test_xor_round_trip() -> None:
    plaintext = _record_like_plaintext()
    key = b"\x5a\xa5"
    ciphertext = _xor(plaintext, key)
    decryptor = XorDecryptor()
    verdict = decryptor.detect(ciphertext)
    assert verdict.is_encrypted
    assert verdict.kind == EncryptionKind.XOR
    assert verdict.confidence == 0.7
    assert 4.0 < verdict.details["entropy"] < 7.5
    assert decryptor.decrypt(ciphertext, key) == plaintext


def test_xor_not_flagged_on_low_entropy() -> None:
    verdict = XorDecryptor().detect(b"\x00" * 512)
    assert not verdict.is_encrypted
    assert verdict.confidence == 0.3


def test_xor_key_guess_assumes_spaces() -> None:
    plaintext = b"say  hi   to    everyone     " * 20
    ciphertext = _xor(plaintext, b"\x41")
    assert guess_xor_key(ciphertext) == b"\x41"
    assert XorDecryptor().decrypt(ciphertext) == plaintext


def test_xor_key_guess_assumes_nul_when_zero_dominates() -> None:
    assert guess_xor_key(b"\x00\x00\x00\x07") == b"\x00"


def test_manager_threshold_never_selects_xor() -> None:
    ciphertext = _xor(_record_like_plaintext(), b"\x5a\xa5")
    verdict = EncryptionHeuristics().detect_encryption(ciphertext)
    assert not verdict.is_encrypted
    assert verdict.kind == EncryptionKind.NONE
    assert verdict.confidence == 1.0


def test_base64_round_trip() -> None:
    original = b"The quick brown fox jumps over the lazy dog"
    encoded = base64.b64encode(original)
    decryptor = Base64Decryptor()
    verdict = decryptor.detect(encoded)
    assert verdict.kind == EncryptionKind.BASE64
    assert verdict.confidence >= 0.85
    assert decryptor.decrypt(encoded) == original
    manager = EncryptionHeuristics()
    assert manager.detect_encryption(encoded).kind == EncryptionKind.BASE64
    result = manager.try_decrypt(encoded)
    assert result.success
    assert result.data == original


def test_base64_rejects_short_or_punctuated_text() -> None:
    assert Base64Decryptor().detect(b"aGVsbG8=").confidence == 0.2
    assert not Base64Decryptor().detect(b"Story content for testing.").is_encrypted


def test_aes_key_and_length_errors() -> None:
    decryptor = AesDecryptor()
    with pytest.raises(EncryptionKeyError):
        decryptor.decrypt(b"\x00" * 32, b"0123456789")
    with pytest.raises(EncryptionKeyError):
        decryptor.decrypt(b"\x00" * 32, None)
    with pytest.raises(CiphertextLengthError):
        decryptor.decrypt(b"\x00" * 40, b"k" * 16)
    with pytest.raises(CiphertextLengthError):
        decryptor.decrypt(b"\x00" * 8, b"k" * 16)


def test_aes_detect_confidence() -> None:
    decryptor = AesDecryptor()
    assert decryptor.detect(b"\x00" * 48).confidence == 0.1
    random_blob = os.urandom(4096)
    verdict = decryptor.detect(random_blob)
    assert verdict.is_encrypted
    assert verdict.confidence == 0.6


def test_aes_round_trip_with_truncated_key() -> None:
    key = bytes(range(20))
    iv = bytes(range(100, 116))
    plaintext = "秘密のセリフ: meet me at dawn".encode("utf-8")
    data = iv + aes_cbc_encrypt(plaintext, key[:16], iv)
    assert AesDecryptor().decrypt(data, key) == plaintext


def test_manager_reports_failures_without_raising() -> None:
    manager = EncryptionHeuristics()
    result = manager.decrypt(b"\x00" * 32, EncryptionKind.AES, b"short")
    assert not result.success
    assert "16" in result.error
    bad_b64 = manager.decrypt(b"abc", EncryptionKind.BASE64)
    assert not bad_b64.success
    plain = manager.try_decrypt(b"plain words, nothing hidden here")
    assert not plain.success
    assert plain.error == "not encrypted"
