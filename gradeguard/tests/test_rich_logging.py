from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.table import Table
from typer.testing import CliRunner

from gradeguard.cli import app
from gradeguard.tests._samples import as_text, make_scored_item


runner = CliRunner()


def test_cli_batch_with_rich_logging(tmp_path: Path):
    items_path = tmp_path / "items.jsonl"
    rows = [
        {"id": "clean", "text": as_text(make_scored_item(1))},
        {"id": "fenced", "text": '```json\n{"isCorrect": true}\n```'},
        {"id": "prose", "text": "Sure! " + as_text(make_scored_item(3, correct=False))},
    ]
    items_path.write_text("\n".join(json.dumps(r) for r in rows))
    out_path = tmp_path / "rich_batch.json"

    console = Console(record=True, width=120)
    console.rule("[bold green]GradeGuard Batch Validation[/bold green]")
    console.log({"event": "items_prepared", "count": len(rows), "file": str(items_path)})

    result = runner.invoke(app, ["batch", str(items_path), "--concurrency", "2", "--out", str(out_path)])
    assert result.exit_code == 0, result.output

    payload = json.loads(out_path.read_text())
    summary = payload["summary"]

    table = Table(title="GradeGuard Batch (Rich Log)", expand=True)
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Success", style="magenta")
    table.add_column("Recovery", style="yellow")
    for entry in payload["results"]:
        meta = entry["metadata"]
        table.add_row(entry["id"], str(entry["success"]), str(meta.get("recoveryStrategy")))
    console.print(table)

    console.log(
        "Functions invoked",
        "gradeguard.cli.cmd_batch",
        "gradeguard.enhanced.EnhancedValidator.validate_batch",
        "gradeguard.recovery.RecoveryOrchestrator.recover",
    )
    console.log("Output summary", summary)

    transcript = console.export_text()
    assert "GradeGuard Batch Validation" in transcript
    assert "Functions invoked" in transcript
    assert "schema_correction" in transcript
    assert "direct_retry" in transcript
    assert summary["successCount"] == 3
