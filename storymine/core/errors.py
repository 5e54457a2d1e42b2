from __future__ import annotations


class StoryMineError(Exception):
    pass


class ConfigurationError(StoryMineError, ValueError):
    pass


class ScanIoError(StoryMineError, OSError):
    pass


class UnsupportedFormat(StoryMineError):
    pass


class DecodeFailure(StoryMineError):
    pass


class EncryptionDecryptFailure(StoryMineError, ValueError):
    pass


class EncryptionKeyError(EncryptionDecryptFailure):
    pass


class CiphertextLengthError(EncryptionDecryptFailure):
    pass


class OperationCancelled(StoryMineError):
    pass


class FileTimeout(OperationCancelled):
    pass
