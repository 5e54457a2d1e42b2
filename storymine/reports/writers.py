from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Callable, Dict, List
from xml.sax.saxutils import escape, quoteattr

from storymine.core.models import ExtractionOutcome
from storymine.infra.logging_utils import LOGGER

CSV_HEADER = ["AssetName", "AssetType", "Source", "SourceFile", "Content"]


def _escape_newlines(value: str) -> str:
    return value.replace("\r", "\\r").replace("\n", "\\n")


def render_json(outcome: ExtractionOutcome) -> str:
    return json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False)


def render_txt(outcome: ExtractionOutcome) -> str:
    lines: List[str] = [
        "=" * 60,
        "Story Extraction Report",
        "=" * 60,
        f"Source: {outcome.source_path}",
        f"Runtime version: {outcome.detected_runtime_version}",
        f"Success: {outcome.success}",
        f"Files processed: {outcome.processed_file_count}",
        f"Fragments: {len(outcome.fragments)}",
        f"Duration: {outcome.duration_ms:.0f} ms",
        "",
        "Statistics:",
    ]
    for provenance, count in outcome.statistics.by_provenance.items():
        lines.append(f"  {provenance}: {count}")
    lines.append(f"  total bytes: {outcome.statistics.total_bytes}")
    if outcome.warnings:
        lines.extend(["", "Warnings:"])
        lines.extend(f"  - {warning}" for warning in outcome.warnings)
    if outcome.errors:
        lines.extend(["", "Errors:"])
        lines.extend(f"  - {error.file}: {error.message}" for error in outcome.errors)
    lines.extend(["", "-" * 60])
    for fragment in outcome.fragments:
        lines.append(f"[{fragment.asset_type}] {fragment.asset_name} ({fragment.encoding_label})")
        lines.append(f"  from {fragment.source_file}")
        lines.append(fragment.content)
        lines.append("-" * 60)
    return "\n".join(lines) + "\n"


def write_csv(outcome: ExtractionOutcome, output_path: Path) -> None:
    with output_path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)
        writer.writerow(CSV_HEADER)
        for fragment in outcome.fragments:
            writer.writerow(
                [
                    fragment.asset_name,
                    fragment.asset_type,
                    fragment.provenance.value,
                    fragment.source_file,
                    _escape_newlines(fragment.content),
                ]
            )


def _cdata(value: str) -> str:
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def render_xml(outcome: ExtractionOutcome) -> str:
    lines: List[str] = [
        '<?xml version="1.0" encoding="utf-8"?>',
        "<StoryExtractionResult success={} sourcePath={} detectedRuntimeVersion={} processedFileCount={}>".format(
            quoteattr(str(outcome.success).lower()),
            quoteattr(outcome.source_path),
            quoteattr(outcome.detected_runtime_version),
            quoteattr(str(outcome.processed_file_count)),
        ),
        f'  <Fragments count="{len(outcome.fragments)}">',
    ]
    for fragment in outcome.fragments:
        lines.append(
            "    <Fragment assetName={} assetType={} provenance={} encoding={} sourceFile={}>".format(
                quoteattr(fragment.asset_name),
                quoteattr(fragment.asset_type),
                quoteattr(fragment.provenance.value),
                quoteattr(fragment.encoding_label),
                quoteattr(fragment.source_file),
            )
        )
        lines.append(f"      <Content>{_cdata(fragment.content)}</Content>")
        lines.append("    </Fragment>")
    lines.append("  </Fragments>")
    lines.append("  <Errors>")
    for error in outcome.errors:
        lines.append(
            f"    <Error file={quoteattr(error.file)} kind={quoteattr(error.kind)} "
            f"timestamp={quoteattr(error.timestamp.isoformat())}>{escape(error.message)}</Error>"
        )
    lines.append("  </Errors>")
    lines.append("  <Warnings>")
    lines.extend(f"    <Warning>{escape(warning)}</Warning>" for warning in outcome.warnings)
    lines.append("  </Warnings>")
    lines.append("</StoryExtractionResult>")
    return "\n".join(lines) + "\n"


TEXT_RENDERERS: Dict[str, Callable[[ExtractionOutcome], str]] = {
    "json": render_json,
    "txt": render_txt,
    "xml": render_xml,
}
SUPPORTED_FORMATS = ("json", "txt", "csv", "xml")


def write_outcome(outcome: ExtractionOutcome, output_path: Path, fmt: str = "json") -> Path:
    fmt = fmt.lower()
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported output format: {fmt}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "csv":
        write_csv(outcome, output_path)
    else:
        output_path.write_text(TEXT_RENDERERS[fmt](outcome), encoding="utf-8")
    LOGGER.info("Report generated", extra={"extra_data": {"output": str(output_path), "format": fmt}})
    return output_path
