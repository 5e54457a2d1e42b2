from __future__ import annotations

import base64
import binascii
import string
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np

from storymine.core.errors import CiphertextLengthError, EncryptionDecryptFailure, EncryptionKeyError
from storymine.core.models import DecryptionResult, EncryptionKind, EncryptionVerdict
from storymine.infra import crypto
from storymine.infra.filesystem import byte_histogram, calculate_entropy
from storymine.infra.logging_utils import LOGGER

MANAGER_THRESHOLD = 0.7

XOR_MIN_ENTROPY = 4.0
XOR_MAX_ENTROPY = 7.5
XOR_MAX_PERIOD = 16
XOR_SAMPLE_BYTES = 1024
XOR_REPETITION_RATIO = 0.3

BASE64_ALPHABET = frozenset(string.ascii_letters + string.digits + "+/=")
BASE64_MIN_LENGTH = 20

AES_MIN_LENGTH = 32
AES_MIN_ENTROPY = 7.5


class Decryptor(ABC):
    kind: EncryptionKind

    @abstractmethod
    def detect(self, data: bytes) -> EncryptionVerdict:
        raise NotImplementedError

    @abstractmethod
    def decrypt(self, data: bytes, key: Optional[bytes] = None) -> bytes:
        raise NotImplementedError


def has_repeating_period(data: bytes) -> bool:
    sample = np.frombuffer(data[:XOR_SAMPLE_BYTES], dtype=np.uint8)
    for period in range(1, XOR_MAX_PERIOD + 1):
        positions = np.arange(period, len(sample))
        if positions.size == 0:
            continue
        matches = int(np.count_nonzero(sample[positions] == sample[positions % period]))
        if matches / positions.size > XOR_REPETITION_RATIO:
            return True
    return False


def guess_xor_key(data: bytes) -> bytes:
    if not data:
        return b"\x00"
    most_frequent = int(np.argmax(byte_histogram(data)))
    assumed = 0x00 if most_frequent == 0 else 0x20
    return bytes([most_frequent ^ assumed])


class XorDecryptor(Decryptor):
    kind = EncryptionKind.XOR

    def detect(self, data: bytes) -> EncryptionVerdict:
        entropy = calculate_entropy(data)
        repetitive = has_repeating_period(data)
        flagged = XOR_MIN_ENTROPY < entropy < XOR_MAX_ENTROPY and repetitive
        return EncryptionVerdict(
            is_encrypted=flagged,
            kind=self.kind if flagged else EncryptionKind.NONE,
            confidence=0.7 if flagged else 0.3,
            details={"entropy": entropy, "has_repetition": repetitive},
        )

    def decrypt(self, data: bytes, key: Optional[bytes] = None) -> bytes:
        if not key:
            key = guess_xor_key(data)
        stream = np.frombuffer(data, dtype=np.uint8)
        pad = np.resize(np.frombuffer(key, dtype=np.uint8), stream.size)
        return np.bitwise_xor(stream, pad).tobytes()


class Base64Decryptor(Decryptor):
    kind = EncryptionKind.BASE64

    def detect(self, data: bytes) -> EncryptionVerdict:
        text = data.decode("ascii", errors="replace").strip()
        charset_ok = all(c in BASE64_ALPHABET or c.isspace() for c in text)
        compact = "".join(text.split())
        length_ok = len(compact) % 4 == 0
        flagged = charset_ok and length_ok and len(text) > BASE64_MIN_LENGTH
        return EncryptionVerdict(
            is_encrypted=flagged,
            kind=self.kind if flagged else EncryptionKind.NONE,
            confidence=0.85 if flagged else 0.2,
            details={"is_base64_chars": charset_ok, "valid_length": length_ok, "has_padding": text.endswith("=")},
        )

    def decrypt(self, data: bytes, key: Optional[bytes] = None) -> bytes:
        text = data.decode("ascii", errors="strict").strip()
        return base64.b64decode(text)


class AesDecryptor(Decryptor):
    kind = EncryptionKind.AES

    def detect(self, data: bytes) -> EncryptionVerdict:
        entropy = calculate_entropy(data)
        block_aligned = len(data) >= AES_MIN_LENGTH and len(data) % crypto.BLOCK_SIZE == 0
        flagged = block_aligned and entropy > AES_MIN_ENTROPY
        return EncryptionVerdict(
            is_encrypted=flagged,
            kind=self.kind if flagged else EncryptionKind.NONE,
            confidence=0.6 if flagged else 0.1,
            details={"entropy": entropy, "block_aligned": block_aligned, "requires_key": True},
        )

    def decrypt(self, data: bytes, key: Optional[bytes] = None) -> bytes:
        if key is None or len(key) < crypto.BLOCK_SIZE:
            raise EncryptionKeyError("AES decryption requires a key of at least 16 bytes")
        if len(data) < crypto.BLOCK_SIZE:
            raise CiphertextLengthError("AES input is shorter than the 16 byte IV")
        iv, ciphertext = data[: crypto.BLOCK_SIZE], data[crypto.BLOCK_SIZE:]
        if len(ciphertext) % crypto.BLOCK_SIZE != 0:
            raise CiphertextLengthError("AES ciphertext length is not a multiple of 16")
        try:
            return crypto.aes_cbc_decrypt(ciphertext, crypto.normalize_key(key), iv)
        except ValueError as exc:
            raise EncryptionDecryptFailure(f"AES decryption failed: {exc}") from exc


class EncryptionHeuristics:
    def __init__(self, decryptors: Optional[List[Decryptor]] = None) -> None:
        self.decryptors: List[Decryptor] = decryptors or [XorDecryptor(), Base64Decryptor(), AesDecryptor()]
        self._by_kind: Dict[EncryptionKind, Decryptor] = {d.kind: d for d in self.decryptors}

    def detect(self, data: bytes, kind: EncryptionKind) -> EncryptionVerdict:
        return self._by_kind[kind].detect(data)

    def detect_encryption(self, data: bytes) -> EncryptionVerdict:
        for decryptor in self.decryptors:
            verdict = decryptor.detect(data)
            if verdict.is_encrypted and verdict.confidence > MANAGER_THRESHOLD:
                return verdict
        return EncryptionVerdict(is_encrypted=False, kind=EncryptionKind.NONE, confidence=1.0)

    def decrypt(self, data: bytes, kind: EncryptionKind, key: Optional[bytes] = None) -> DecryptionResult:
        decryptor = self._by_kind.get(kind)
        if decryptor is None:
            return DecryptionResult(success=False, kind=kind, error=f"no decryptor for {kind.value}")
        try:
            plaintext = decryptor.decrypt(data, key)
        except (EncryptionDecryptFailure, ValueError, binascii.Error) as exc:
            LOGGER.debug("Decryption failed", extra={"extra_data": {"kind": kind.value, "error": str(exc)}})
            return DecryptionResult(success=False, kind=kind, error=str(exc))
        return DecryptionResult(success=True, kind=kind, data=plaintext)

    def try_decrypt(self, data: bytes, key: Optional[bytes] = None) -> DecryptionResult:
        verdict = self.detect_encryption(data)
        if not verdict.is_encrypted:
            return DecryptionResult(success=False, kind=EncryptionKind.NONE, error="not encrypted")
        return self.decrypt(data, verdict.kind, key)
