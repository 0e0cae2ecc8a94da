from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import sys

import typer
from dotenv import load_dotenv

from .config import load_runtime_settings
from .enhanced import BatchOptions, EnhancedValidator
from .errors import ConfigurationError
from .telemetry import NullMetricsSink
from .types import RecordKind, ValidationContext


app = typer.Typer(help="GradeGuard: validate and recover LLM grading output")


@app.callback()
def _root_callback():
    """GradeGuard CLI root."""
    pass


def _build_validator(config: Optional[Path]) -> EnhancedValidator:
    load_dotenv()
    try:
        settings = load_runtime_settings(config)
    except ConfigurationError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(2)
    # Results go to stdout/--out; per-call metrics are not printed from the CLI
    return EnhancedValidator(settings, sink=NullMetricsSink())


def _parse_kind(kind: str) -> RecordKind:
    try:
        return RecordKind.coerce(kind)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(2)


def _read_items(path: Path) -> List[Dict[str, Any]]:
    """Each JSONL line is either {"id": ..., "text": "..."} or a bare JSON string."""
    items: List[Dict[str, Any]] = []
    for lineno, line in enumerate(path.read_text().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError as exc:
            typer.echo(f"ERROR: {path}:{lineno} is not valid JSON ({exc})", err=True)
            raise typer.Exit(2)
        if isinstance(row, str):
            items.append({"id": str(lineno), "text": row})
        elif isinstance(row, dict) and any(k in row for k in ("text", "rawText", "raw_text", "jsonString")):
            items.append({"id": str(lineno), **row})
        else:
            typer.echo(f"ERROR: {path}:{lineno} must be a string or an object with a 'text' field", err=True)
            raise typer.Exit(2)
    return items


def _write(payload: Dict[str, Any], out: Optional[Path]) -> None:
    text = json.dumps(payload, indent=2)
    if out is None:
        typer.echo(text)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text)
    typer.echo(f"Wrote {out}")


@app.command("validate")
def cmd_validate(
    source: str = typer.Argument(..., help="File containing the model output, or '-' for stdin"),
    kind: str = typer.Option("single", help="Record kind: single, batch or analysis"),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Settings file (YAML/JSON)"),
    question_number: Optional[int] = typer.Option(None, help="Question number used by fallback synthesis"),
    question_count: Optional[int] = typer.Option(None, help="Expected question count for batch fallback"),
    out: Optional[Path] = typer.Option(None, help="Write the JSON result here instead of stdout"),
):
    """Validate one payload and print the EnhancedResult as JSON."""
    record_kind = _parse_kind(kind)
    validator = _build_validator(config)
    if source == "-":
        raw = sys.stdin.read()
    else:
        path = Path(source)
        if not path.is_file():
            typer.echo(f"ERROR: {source} does not exist", err=True)
            raise typer.Exit(2)
        raw = path.read_text()
    ctx = ValidationContext(question_number=question_number, question_count=question_count)
    result = validator.validate_one(raw, record_kind, ctx)
    _write(result.to_dict(), out)
    if not result.success:
        raise typer.Exit(1)


@app.command("batch")
def cmd_batch(
    items_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSONL file of model outputs"),
    kind: str = typer.Option("single", help="Record kind: single, batch or analysis"),
    concurrency: Optional[int] = typer.Option(None, help="Items validated in parallel per chunk"),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Settings file (YAML/JSON)"),
    out: Optional[Path] = typer.Option(None, help="Write results and summary here instead of stdout"),
):
    """Validate every line of a JSONL file and print results plus a summary."""
    record_kind = _parse_kind(kind)
    validator = _build_validator(config)
    items = _read_items(items_file)
    try:
        batch = validator.validate_batch(items, record_kind, BatchOptions(concurrency=concurrency))
    except ConfigurationError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(2)
    _write(batch.to_dict(), out)


@app.command("recommend")
def cmd_recommend(
    items_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSONL file of model outputs"),
    kind: str = typer.Option("single", help="Record kind: single, batch or analysis"),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Settings file (YAML/JSON)"),
    out: Optional[Path] = typer.Option(None, help="Write the report here instead of stdout"),
):
    """Validate a JSONL sample and print the optimizer's tuning report."""
    record_kind = _parse_kind(kind)
    validator = _build_validator(config)
    items = _read_items(items_file)
    batch = validator.validate_batch(items, record_kind)
    stats = validator.statistics()
    _write({"summary": batch.summary.to_dict(), **stats}, out)


if __name__ == "__main__":
    # Allow module execution via: python -m gradeguard.cli
    app()
