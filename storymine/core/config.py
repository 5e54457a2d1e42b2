from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from storymine.core.errors import ConfigurationError
from storymine.infra.filesystem import read_json

MIB = 1024 * 1024

DEFAULT_EXCLUDE_PATTERNS = (
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.wav",
    "*.mp3",
    "*.ogg",
    "*.fbx",
    "*.obj",
    "*.shader",
    "*.mat",
)

CAMEL_CASE_KEYS: Dict[str, str] = {
    "extractPlainText": "extract_plain_text",
    "extractStructuredRecords": "extract_structured_records",
    "extractAssemblyStrings": "extract_assembly_strings",
    "extractRawBinaryFallback": "extract_raw_binary_fallback",
    "processSidecarStreams": "process_sidecar_streams",
    "attemptDecryption": "attempt_decryption",
    "keywords": "keywords",
    "minTextLength": "min_text_length",
    "maxTextLength": "max_text_length",
    "useParallelProcessing": "use_parallel_processing",
    "maxParallelism": "max_parallelism",
    "useStreaming": "use_streaming",
    "streamingThresholdBytes": "streaming_threshold_bytes",
    "streamingChunkSizeBytes": "streaming_chunk_size_bytes",
    "maxChunksPerFile": "max_chunks_per_file",
    "maxFragmentsPerBuffer": "max_fragments_per_buffer",
    "prioritizeCjkText": "prioritize_cjk_text",
    "decryptionKey": "decryption_key",
    "fileTimeoutSeconds": "file_timeout_seconds",
    "memoryWatermarkBytes": "memory_watermark_bytes",
    "excludePatterns": "exclude_patterns",
}


@dataclass
class ExtractionConfig:
    """Options for one extraction run.

    ``memory_watermark_bytes`` is measured as bytes read since the last reclaim
    pass, not as process memory; crossing it triggers a ``gc.collect`` between files.
    """

    extract_plain_text: bool = True
    extract_structured_records: bool = True
    extract_assembly_strings: bool = True
    extract_raw_binary_fallback: bool = True
    process_sidecar_streams: bool = True
    attempt_decryption: bool = True
    keywords: List[str] = field(default_factory=list)
    min_text_length: int = 2
    max_text_length: int = 1_000_000
    use_parallel_processing: bool = True
    max_parallelism: int = 2
    use_streaming: bool = True
    streaming_threshold_bytes: int = 64 * MIB
    streaming_chunk_size_bytes: int = 8 * MIB
    max_chunks_per_file: int = 64
    max_fragments_per_buffer: int = 10_000
    prioritize_cjk_text: bool = True
    decryption_key: Optional[bytes] = None
    file_timeout_seconds: Optional[float] = 300.0
    memory_watermark_bytes: int = 512 * MIB
    exclude_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))

    def validate(self) -> None:
        if self.min_text_length < 1:
            raise ConfigurationError("min_text_length must be >= 1")
        if self.max_text_length < self.min_text_length:
            raise ConfigurationError("max_text_length must be >= min_text_length")
        if self.max_parallelism < 1:
            raise ConfigurationError("max_parallelism must be >= 1")
        for name in (
            "streaming_threshold_bytes",
            "streaming_chunk_size_bytes",
            "max_chunks_per_file",
            "max_fragments_per_buffer",
            "memory_watermark_bytes",
        ):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be positive")
        if self.file_timeout_seconds is not None and self.file_timeout_seconds <= 0:
            raise ConfigurationError("file_timeout_seconds must be positive or None")

    @property
    def worker_count(self) -> int:
        return self.max_parallelism if self.use_parallel_processing else 1

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExtractionConfig":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration option: {key}")
            kwargs[name] = value
        key = kwargs.get("decryption_key")
        if isinstance(key, str):
            kwargs["decryption_key"] = decode_key(key)
        config = cls(**kwargs)
        config.validate()
        return config


def decode_key(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise ConfigurationError(f"decryption key is not valid base64: {exc}") from exc


def load_config(path: Path) -> ExtractionConfig:
    try:
        data = read_json(path)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Unable to read configuration file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")
    return ExtractionConfig.from_mapping(data)
