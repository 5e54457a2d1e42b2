from __future__ import annotations

import dataclasses
import fnmatch
import gc
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from storymine.core.cancellation import CancellationToken
from storymine.core.catalog_scanner import AssetCatalogScanner
from storymine.core.config import ExtractionConfig
from storymine.core.encryption import EncryptionHeuristics
from storymine.core.errors import ConfigurationError, FileTimeout, OperationCancelled, UnsupportedFormat
from storymine.core.format_detector import bundle_signature, is_recognized_container, validate_container_header
from storymine.core.models import (
    ASSET_TYPES,
    CatalogEntry,
    DecodedTextFragment,
    EncryptionKind,
    ExtractedFragment,
    ExtractionError,
    ExtractionOutcome,
    ExtractionUnit,
    FileKind,
    ProgressReport,
    Provenance,
    RunState,
)
from storymine.core.records import is_narrative_field
from storymine.core.string_engine import StringExtractionEngine
from storymine.infra.filesystem import read_head
from storymine.infra.logging_utils import LOGGER
from storymine.plugins.assembly_strings import ProgramAssemblySource
from storymine.plugins.base import SourceKind, SourceParser, SourceRegistry
from storymine.plugins.structured_records import StructuredRecordSource
from storymine.plugins.text_source import TextLikeSource

PROGRESS_INTERVAL = 10
CANCELLED_WARNING = "Extraction was cancelled"

ProgressCallback = Callable[[ProgressReport], None]


@dataclass
class FileReport:
    path: Path
    fragments: List[ExtractedFragment] = field(default_factory=list)
    errors: List[ExtractionError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    bytes_read: int = 0
    encrypted_units: int = 0
    decrypted_units: int = 0
    resource_streams: int = 0
    cancelled: bool = False


def default_registry(engine: Optional[StringExtractionEngine] = None) -> SourceRegistry:
    registry = SourceRegistry()
    registry.register(TextLikeSource(engine))
    registry.register(StructuredRecordSource())
    registry.register(ProgramAssemblySource())
    return registry


def is_excluded(name: str, config: ExtractionConfig) -> bool:
    lower = name.lower()
    return any(fnmatch.fnmatch(lower, pattern.lower()) for pattern in config.exclude_patterns)


def passes_filters(fragment: DecodedTextFragment, config: ExtractionConfig) -> bool:
    if not config.min_text_length <= len(fragment.text) <= config.max_text_length:
        return False
    if not config.keywords or is_narrative_field(fragment.label):
        return True
    lower = fragment.text.lower()
    return any(keyword.lower() in lower for keyword in config.keywords)


class ExtractionOrchestrator:
    def __init__(
        self,
        scanner: Optional[AssetCatalogScanner] = None,
        registry: Optional[SourceRegistry] = None,
        heuristics: Optional[EncryptionHeuristics] = None,
        engine: Optional[StringExtractionEngine] = None,
    ) -> None:
        self.engine = engine or StringExtractionEngine()
        self.scanner = scanner or AssetCatalogScanner()
        self.registry = registry or default_registry(self.engine)
        self.heuristics = heuristics or EncryptionHeuristics()
        self.state = RunState.IDLE
        self._state_lock = threading.Lock()

    def run(
        self,
        root_path: Union[str, Path],
        config: Optional[ExtractionConfig] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExtractionOutcome:
        config = config or ExtractionConfig()
        token = cancel_token or CancellationToken()
        outcome = ExtractionOutcome(source_path=str(root_path))
        self._transition(RunState.SCANNING)
        try:
            root = self._validate(root_path, config)
        except ConfigurationError as exc:
            LOGGER.error("Invalid extraction request", extra={"extra_data": {"root": str(root_path), "error": str(exc)}})
            outcome.add_error(
                ExtractionError(file=str(root_path), message=str(exc), kind="configuration", exception=type(exc).__name__)
            )
            outcome.finalize()
            self._transition(RunState.FAILED)
            return outcome

        final_state = RunState.COMPLETED
        try:
            outcome.detected_runtime_version = self.scanner.detect_runtime_version(root if root.is_dir() else root.parent)
            catalog = self.scanner.scan(root) if root.is_dir() else self.scanner.scan_file(root)
            files = self._work_list(catalog, config)
            token.raise_if_cancelled()
            self._transition(RunState.EXTRACTING)
            self._extract_all(files, config, outcome, progress, token)
            token.raise_if_cancelled()
            outcome.success = True
        except OperationCancelled:
            LOGGER.warning("Extraction cancelled", extra={"extra_data": {"root": str(root)}})
            outcome.add_warning(CANCELLED_WARNING)
            final_state = RunState.CANCELLED
        except Exception as exc:
            LOGGER.error("Extraction pipeline failed", extra={"extra_data": {"root": str(root), "error": str(exc)}})
            outcome.add_error(
                ExtractionError(file=str(root), message=str(exc), kind="pipeline", exception=type(exc).__name__)
            )
            final_state = RunState.FAILED

        self._transition(RunState.FINALIZING)
        outcome.finalize()
        self._transition(final_state)
        LOGGER.info(
            "Extraction finished",
            extra={
                "extra_data": {
                    "root": str(root),
                    "fragments": len(outcome.fragments),
                    "files": outcome.processed_file_count,
                    "errors": len(outcome.errors),
                }
            },
        )
        return outcome

    def process_file(self, entry: CatalogEntry, config: ExtractionConfig, token: CancellationToken) -> FileReport:
        report = FileReport(path=entry.path)
        if entry.size == 0 or is_excluded(entry.name, config):
            return report
        if entry.kind == FileKind.RESOURCE_STREAM:
            self._isolated(report, entry.path, lambda scope: self._extract_stream(entry, config, scope, report), config, token)
        else:
            self._isolated(report, entry.path, lambda scope: self._extract_entry(entry, config, scope, report), config, token)
        stream = entry.linked_stream
        if stream is not None and config.process_sidecar_streams and not report.cancelled and stream.size > 0:
            self._isolated(report, stream.path, lambda scope: self._extract_stream(stream, config, scope, report), config, token)
        return report

    def _validate(self, root_path: Union[str, Path], config: ExtractionConfig) -> Path:
        if not root_path:
            raise ConfigurationError("A root path is required")
        root = Path(root_path)
        if not root.exists():
            raise ConfigurationError(f"Path {root} does not exist")
        config.validate()
        return root

    def _transition(self, state: RunState) -> None:
        with self._state_lock:
            previous, self.state = self.state, state
        LOGGER.info("Run state changed", extra={"extra_data": {"from": previous.value, "to": state.value}})

    def _work_list(self, catalog: CatalogEntry, config: ExtractionConfig) -> List[CatalogEntry]:
        files = list(catalog.iter_files())
        linked = {f.linked_stream.path for f in files if f.linked_stream is not None}
        work: List[CatalogEntry] = []
        for entry in files:
            if entry.kind == FileKind.RESOURCE_STREAM:
                # linked streams ride along with their owning container
                if entry.path in linked or not config.process_sidecar_streams:
                    continue
            work.append(entry)
        return work

    def _extract_all(
        self,
        files: List[CatalogEntry],
        config: ExtractionConfig,
        outcome: ExtractionOutcome,
        progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> None:
        total = len(files)
        processed = 0
        bytes_since_reclaim = 0
        LOGGER.info("Extracting files", extra={"extra_data": {"count": total, "workers": config.worker_count}})
        with ThreadPoolExecutor(max_workers=config.worker_count, thread_name_prefix="storymine") as executor:
            futures = {executor.submit(self._run_file, entry, config, token): entry for entry in files}
            for future in as_completed(futures):
                entry = futures[future]
                report = future.result()
                self._merge(report, outcome)
                if report.cancelled:
                    continue
                processed += 1
                outcome.processed_file_count = processed
                bytes_since_reclaim += report.bytes_read
                if bytes_since_reclaim >= config.memory_watermark_bytes:
                    collected = gc.collect(1)
                    LOGGER.debug("Memory watermark reached", extra={"extra_data": {"collected": collected}})
                    bytes_since_reclaim = 0
                if progress is not None and (processed % PROGRESS_INTERVAL == 0 or processed == total):
                    self._report_progress(
                        progress,
                        ProgressReport(
                            total_files=total,
                            processed_files=processed,
                            current_file=entry.name,
                            current_operation="Extracting",
                            fragments_so_far=len(outcome.fragments),
                        ),
                    )

    def _run_file(self, entry: CatalogEntry, config: ExtractionConfig, token: CancellationToken) -> FileReport:
        if token.is_cancelled:
            return FileReport(path=entry.path, cancelled=True)
        return self.process_file(entry, config, token)

    def _report_progress(self, progress: ProgressCallback, report: ProgressReport) -> None:
        try:
            progress(report)
        except Exception as exc:
            LOGGER.warning("Progress callback failed", extra={"extra_data": {"error": str(exc)}})

    def _merge(self, report: FileReport, outcome: ExtractionOutcome) -> None:
        outcome.add_fragments(report.fragments)
        for error in report.errors:
            outcome.add_error(error)
        for warning in report.warnings:
            outcome.add_warning(warning)
        stats = outcome.statistics
        stats.encrypted_units += report.encrypted_units
        stats.decrypted_units += report.decrypted_units
        stats.resource_streams_processed += report.resource_streams

    def _isolated(
        self,
        report: FileReport,
        path: Path,
        action: Callable[[CancellationToken], None],
        config: ExtractionConfig,
        token: CancellationToken,
    ) -> None:
        scope = token.child(config.file_timeout_seconds)
        try:
            action(scope)
        except FileTimeout as exc:
            LOGGER.warning("File timed out", extra={"extra_data": {"file": str(path), "error": str(exc)}})
            report.errors.append(ExtractionError(file=str(path), message=str(exc), kind="timeout", exception="FileTimeout"))
        except OperationCancelled:
            report.cancelled = True
        except MemoryError as exc:
            gc.collect()
            LOGGER.error("Out of memory while extracting", extra={"extra_data": {"file": str(path)}})
            report.errors.append(
                ExtractionError(
                    file=str(path),
                    message=f"resource exhaustion: {exc}",
                    kind="resource_exhaustion",
                    exception="MemoryError",
                )
            )
        except Exception as exc:
            LOGGER.error("File extraction failed", extra={"extra_data": {"file": str(path), "error": str(exc)}})
            report.errors.append(
                ExtractionError(file=str(path), message=str(exc), kind="file_error", exception=type(exc).__name__)
            )

    def _plan(self, entry: CatalogEntry, config: ExtractionConfig) -> List[Tuple[SourceParser, Provenance]]:
        try:
            parsers = self.registry.sources_for(entry.kind)
        except UnsupportedFormat:
            return []
        plan: List[Tuple[SourceParser, Provenance]] = []
        for parser in parsers:
            if not parser.enabled(config):
                continue
            if parser.kind == SourceKind.TEXT_LIKE:
                if entry.kind.is_container and config.extract_plain_text:
                    plan.append((parser, Provenance.CONTAINER_TEXT))
                elif not entry.kind.is_container and config.extract_raw_binary_fallback:
                    plan.append((parser, Provenance.RAW_BINARY))
            elif parser.kind == SourceKind.STRUCTURED_RECORD:
                plan.append((parser, Provenance.STRUCTURED_RECORD))
            elif parser.kind == SourceKind.PROGRAM_ASSEMBLY:
                plan.append((parser, Provenance.ASSEMBLY_LITERAL))
        return plan

    def _container_metadata(self, entry: CatalogEntry) -> Dict[str, Any]:
        if not entry.kind.is_container:
            return {}
        head = read_head(entry.path)
        metadata: Dict[str, Any] = {"recognized": is_recognized_container(entry.kind, head)}
        signature = bundle_signature(head)
        if signature is not None:
            metadata["bundleSignature"] = signature
        else:
            header = validate_container_header(head)
            metadata.update(headerValid=header.is_valid, formatVersion=header.format_version)
        return metadata

    def _extract_entry(
        self, entry: CatalogEntry, config: ExtractionConfig, scope: CancellationToken, report: FileReport
    ) -> None:
        plan = self._plan(entry, config)
        if not plan:
            return
        base_metadata = self._container_metadata(entry)
        self._check_chunk_ceiling(entry, config, report)
        for unit in self.engine.iter_units(entry.path, entry.size, config, scope):
            report.bytes_read += len(unit.data)
            for parser, provenance in plan:
                scope.raise_if_cancelled()
                if parser.kind == SourceKind.TEXT_LIKE:
                    decoded, decrypted = self._parse_with_decryption(parser, unit, config, scope, report)
                else:
                    decoded, decrypted = parser.parse(unit, config, scope), None
                report.fragments.extend(self._wrap(decoded, entry, provenance, unit, decrypted, base_metadata, config))

    def _extract_stream(
        self, entry: CatalogEntry, config: ExtractionConfig, scope: CancellationToken, report: FileReport
    ) -> None:
        parsers = [p for p in self.registry.sources_for(FileKind.RESOURCE_STREAM) if p.kind == SourceKind.TEXT_LIKE]
        if not parsers:
            return
        self._check_chunk_ceiling(entry, config, report)
        for unit in self.engine.iter_units(entry.path, entry.size, config, scope):
            report.bytes_read += len(unit.data)
            decoded, decrypted = self._parse_with_decryption(parsers[0], unit, config, scope, report)
            report.fragments.extend(self._wrap(decoded, entry, Provenance.RESOURCE_STREAM, unit, decrypted, {}, config))
        report.resource_streams += 1

    def _check_chunk_ceiling(self, entry: CatalogEntry, config: ExtractionConfig, report: FileReport) -> None:
        if self.engine.exceeds_chunk_ceiling(entry.size, config):
            report.warnings.append(
                f"{entry.path}: only the first {config.max_chunks_per_file} chunks were scanned"
            )

    def _parse_with_decryption(
        self,
        parser: SourceParser,
        unit: ExtractionUnit,
        config: ExtractionConfig,
        scope: CancellationToken,
        report: FileReport,
    ) -> Tuple[List[DecodedTextFragment], Optional[EncryptionKind]]:
        if config.attempt_decryption and unit.data:
            verdict = self.heuristics.detect_encryption(unit.data)
            if verdict.is_encrypted:
                report.encrypted_units += 1
                result = self.heuristics.decrypt(unit.data, verdict.kind, config.decryption_key)
                if result.success and result.data:
                    decoded = parser.parse(dataclasses.replace(unit, data=result.data), config, scope)
                    if decoded:
                        report.decrypted_units += 1
                        return decoded, verdict.kind
                LOGGER.debug(
                    "Falling back to raw bytes",
                    extra={"extra_data": {"source": unit.source_id, "kind": verdict.kind.value, "error": result.error}},
                )
        return parser.parse(unit, config, scope), None

    def _wrap(
        self,
        decoded: List[DecodedTextFragment],
        entry: CatalogEntry,
        provenance: Provenance,
        unit: ExtractionUnit,
        decrypted: Optional[EncryptionKind],
        base_metadata: Dict[str, Any],
        config: ExtractionConfig,
    ) -> List[ExtractedFragment]:
        wrapped: List[ExtractedFragment] = []
        for fragment in decoded:
            if not passes_filters(fragment, config):
                continue
            metadata: Dict[str, Any] = dict(base_metadata)
            metadata.update({"offset": fragment.offset, "length": fragment.length})
            if fragment.label:
                metadata["field"] = fragment.label
            if unit.chunk_index is not None:
                metadata["chunk"] = unit.chunk_index
            if decrypted is not None:
                metadata["decrypted"] = decrypted.value
            name = f"{entry.name}:{fragment.label}" if fragment.label else entry.name
            wrapped.append(
                ExtractedFragment(
                    asset_name=f"{name}@{fragment.offset}",
                    source_file=str(entry.path),
                    asset_type=ASSET_TYPES[provenance],
                    content=fragment.text,
                    provenance=provenance,
                    encoding_label=fragment.codec,
                    metadata=metadata,
                )
            )
        return wrapped
