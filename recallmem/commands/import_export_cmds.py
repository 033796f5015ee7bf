from __future__ import annotations

import datetime as dt
import os
import sys
from pathlib import Path

import typer
from rich import print
from rich.markup import escape


def _parse_date_ms(value: str | None, *, option: str) -> int | None:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value)
    except ValueError as exc:
        print(f"[red]Invalid {option} date (expected ISO format): {value}[/red]")
        raise typer.Exit(code=1) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return int(parsed.timestamp() * 1000)


def export_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    output: str,
    project: str | None,
    all_projects: bool,
    since: str | None,
    until: str | None,
) -> None:
    """Export observations, summaries and prompts as JSON lines."""

    since_epoch = _parse_date_ms(since, option="--since")
    until_epoch = _parse_date_ms(until, option="--until")
    store = store_from_path(db_path)
    written = 0
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        lines = store.export_jsonl(
            project=resolved_project, since_epoch=since_epoch, until_epoch=until_epoch
        )
        if output == "-":
            for line in lines:
                sys.stdout.write(line + "\n")
                written += 1
        else:
            output_path = Path(output).expanduser()
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with output_path.open("w", encoding="utf-8") as handle:
                for line in lines:
                    handle.write(line + "\n")
                    written += 1
    finally:
        store.close()
    if output != "-":
        # The first line is metadata.
        print(f"[green]Exported {max(0, written - 1)} records to {escape(output)}[/green]")


def import_cmd(
    *,
    store_from_path,
    db_path: str | None,
    input_file: str,
    dry_run: bool,
) -> None:
    """Import a JSON lines export, skipping records already present."""

    if input_file == "-":
        lines = sys.stdin.read().splitlines()
    else:
        input_path = Path(input_file).expanduser()
        if not input_path.exists():
            print(f"[red]Input file not found: {input_file}[/red]")
            raise typer.Exit(code=1)
        lines = input_path.read_text(encoding="utf-8").splitlines()

    store = store_from_path(db_path)
    try:
        result = store.import_jsonl(lines, dry_run=dry_run)
    finally:
        store.close()

    action = "Would import" if dry_run else "Imported"
    print(
        f"{action} {result['imported']} of {result['total']} records "
        f"({result['skipped']} skipped, {result['errors']} errors)"
    )
    for detail in result["error_details"][:20]:
        print(f"[yellow]line {detail['line']}: {escape(detail['error'])}[/yellow]")
    if len(result["error_details"]) > 20:
        print(f"[yellow]... and {len(result['error_details']) - 20} more[/yellow]")
