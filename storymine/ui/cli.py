from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from storymine import __app_name__, __version__
from storymine.core.config import ExtractionConfig, decode_key, load_config
from storymine.core.errors import ConfigurationError
from storymine.core.models import ProgressReport
from storymine.core.orchestrator import ExtractionOrchestrator
from storymine.infra.logging_utils import configure_logging
from storymine.reports.writers import SUPPORTED_FORMATS, write_outcome

app = typer.Typer(add_completion=False, help=f"{__app_name__} {__version__}: mine narrative text from game asset folders.")


def _parse_keywords(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _echo_progress(report: ProgressReport) -> None:
    typer.echo(f"[{report.processed_files}/{report.total_files}] {report.current_file} ({report.fragments_so_far} fragments)", err=True)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO)


@app.command()
def extract(
    input_path: Path = typer.Argument(..., help="Game data directory or single asset file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Report path (defaults to <input>_story.<format>)."),
    fmt: str = typer.Option("json", "--format", "-f", help="Report format: json, txt, csv or xml."),
    keywords: str = typer.Option("", "--keywords", "-k", help="Comma separated keyword filter."),
    min_length: Optional[int] = typer.Option(None, "--min-length", help="Minimum fragment length."),
    max_length: Optional[int] = typer.Option(None, "--max-length", help="Maximum fragment length."),
    parallel: Optional[int] = typer.Option(None, "--parallel", "-p", min=1, help="Worker count; 1 disables parallelism."),
    cjk: Optional[bool] = typer.Option(None, "--cjk/--no-cjk", help="Prefer CJK fragments and run the Shift-JIS scan."),
    decrypt_key: Optional[str] = typer.Option(None, "--decrypt-key", help="Base64 encoded decryption key."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON configuration file."),
) -> None:
    if fmt.lower() not in SUPPORTED_FORMATS:
        raise typer.BadParameter(f"format must be one of {', '.join(SUPPORTED_FORMATS)}", param_hint="--format")
    try:
        config = load_config(config_file) if config_file is not None else ExtractionConfig()
        if keywords:
            config.keywords = _parse_keywords(keywords)
        if min_length is not None:
            config.min_text_length = min_length
        if max_length is not None:
            config.max_text_length = max_length
        if parallel is not None:
            config.max_parallelism = parallel
            config.use_parallel_processing = parallel > 1
        if cjk is not None:
            config.prioritize_cjk_text = cjk
        if decrypt_key:
            config.decryption_key = decode_key(decrypt_key)
        config.validate()
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2)

    outcome = ExtractionOrchestrator().run(input_path, config, progress=_echo_progress)
    if any(error.kind == "configuration" for error in outcome.errors):
        typer.echo(f"Configuration error: {outcome.errors[0].message}", err=True)
        raise typer.Exit(code=2)

    target = output or input_path.parent / f"{input_path.name}_story.{fmt.lower()}"
    write_outcome(outcome, target, fmt)
    typer.echo(f"Extracted {len(outcome.fragments)} fragments from {outcome.processed_file_count} files into {target}")
    for warning in outcome.warnings:
        typer.echo(f"warning: {warning}", err=True)
    if not outcome.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
