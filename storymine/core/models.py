from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

UNKNOWN_VERSION = "Unknown"


class FileKind(str, Enum):
    DIRECTORY = "directory"
    SERIALIZED_CONTAINER = "serialized_container"
    RESOURCE_BUNDLE = "resource_bundle"
    RESOURCE_STREAM = "resource_stream"
    PROGRAM_ASSEMBLY = "program_assembly"
    BOOTSTRAP_DESCRIPTOR = "bootstrap_descriptor"
    OTHER = "other"

    @property
    def is_container(self) -> bool:
        return self in (FileKind.SERIALIZED_CONTAINER, FileKind.RESOURCE_BUNDLE)


class Provenance(str, Enum):
    CONTAINER_TEXT = "container_text"
    STRUCTURED_RECORD = "structured_record"
    ASSEMBLY_LITERAL = "assembly_literal"
    RESOURCE_STREAM = "resource_stream"
    RAW_BINARY = "raw_binary"


ASSET_TYPES: Dict[Provenance, str] = {
    Provenance.CONTAINER_TEXT: "TextAsset",
    Provenance.STRUCTURED_RECORD: "MonoBehaviour",
    Provenance.ASSEMBLY_LITERAL: "Assembly",
    Provenance.RESOURCE_STREAM: "ResourceStream",
    Provenance.RAW_BINARY: "Binary",
}


class EncryptionKind(str, Enum):
    NONE = "none"
    XOR = "xor"
    BASE64 = "base64"
    AES = "aes"
    UNKNOWN = "unknown"


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    EXTRACTING = "extracting"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class CatalogEntry:
    path: Path
    name: str
    is_directory: bool
    kind: FileKind
    size: int = 0
    children: Tuple["CatalogEntry", ...] = ()
    linked_stream: Optional["CatalogEntry"] = None

    def iter_files(self) -> Iterator["CatalogEntry"]:
        if not self.is_directory:
            yield self
            return
        for child in self.children:
            yield from child.iter_files()


@dataclass(frozen=True)
class HeaderInfo:
    is_valid: bool
    metadata_size: int = 0
    file_size: int = 0
    format_version: int = 0
    data_offset: int = 0
    is_big_endian: bool = True


@dataclass(frozen=True)
class ExtractionUnit:
    data: bytes
    path: Path
    chunk_index: Optional[int] = None
    base_offset: int = 0

    @property
    def source_id(self) -> str:
        if self.chunk_index is None:
            return str(self.path)
        return f"{self.path}#chunk{self.chunk_index}"


@dataclass(frozen=True)
class DecodedTextFragment:
    text: str
    codec: str
    offset: int
    length: int
    label: Optional[str] = None


@dataclass
class EncryptionVerdict:
    is_encrypted: bool
    kind: EncryptionKind
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DecryptionResult:
    success: bool
    kind: EncryptionKind
    data: Optional[bytes] = None
    error: Optional[str] = None


@dataclass
class ExtractedFragment:
    asset_name: str
    source_file: str
    asset_type: str
    content: str
    provenance: Provenance
    encoding_label: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assetName": self.asset_name,
            "sourceFile": self.source_file,
            "assetType": self.asset_type,
            "content": self.content,
            "provenance": self.provenance.value,
            "encodingLabel": self.encoding_label,
            "metadata": self.metadata,
        }


@dataclass
class ExtractionError:
    file: str
    message: str
    kind: str = "file_error"
    exception: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "message": self.message,
            "kind": self.kind,
            "exception": self.exception,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExtractionStatistics:
    by_provenance: Dict[str, int] = field(default_factory=lambda: {p.value: 0 for p in Provenance})
    total_bytes: int = 0
    encrypted_units: int = 0
    decrypted_units: int = 0
    resource_streams_processed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "byProvenance": dict(self.by_provenance),
            "totalBytes": self.total_bytes,
            "encryptedUnits": self.encrypted_units,
            "decryptedUnits": self.decrypted_units,
            "resourceStreamsProcessed": self.resource_streams_processed,
        }


@dataclass
class ProgressReport:
    total_files: int
    processed_files: int
    current_file: str
    current_operation: str
    fragments_so_far: int


@dataclass
class ExtractionOutcome:
    source_path: str
    success: bool = False
    detected_runtime_version: str = UNKNOWN_VERSION
    fragments: List[ExtractedFragment] = field(default_factory=list)
    processed_file_count: int = 0
    errors: List[ExtractionError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    statistics: ExtractionStatistics = field(default_factory=ExtractionStatistics)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def finalized(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> float:
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds() * 1000.0

    def add_fragments(self, fragments: List[ExtractedFragment]) -> None:
        with self._lock:
            self.fragments.extend(fragments)

    def add_error(self, error: ExtractionError) -> None:
        with self._lock:
            self.errors.append(error)

    def add_warning(self, message: str) -> None:
        with self._lock:
            self.warnings.append(message)

    def finalize(self) -> None:
        if self.finalized:
            raise RuntimeError("outcome already finalized")
        stats = self.statistics
        stats.by_provenance = {p.value: 0 for p in Provenance}
        total = 0
        for fragment in self.fragments:
            stats.by_provenance[fragment.provenance.value] += 1
            total += len(fragment.content.encode("utf-8"))
        stats.total_bytes = total
        self.end_time = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sourcePath": self.source_path,
            "detectedRuntimeVersion": self.detected_runtime_version,
            "fragments": [f.to_dict() for f in self.fragments],
            "processedFileCount": self.processed_file_count,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "durationMs": round(self.duration_ms, 3),
            "statisticsByProvenance": dict(self.statistics.by_provenance),
            "statistics": self.statistics.to_dict(),
        }
