from __future__ import annotations

import logging
import os
import sys

import typer
from rich import print

from . import __version__
from .commands.common import resolve_project_for_cli, store_from_path
from .commands.import_export_cmds import export_cmd, import_cmd
from .commands.maintenance_cmds import (
    consolidate_cmd,
    embed_cmd,
    init_db_cmd,
    purge_cmd,
    stale_cmd,
    stats_cmd,
)
from .commands.memory_cmds import context_cmd, recent_cmd, remember_cmd, search_cmd
from .store import MemoryStore

app = typer.Typer(help="recallmem: persistent memory for coding agents")


def _store(db_path: str | None) -> MemoryStore:
    return store_from_path(db_path)


def _resolve_project(cwd: str, project: str | None, all_projects: bool = False) -> str | None:
    return resolve_project_for_cli(cwd, project, all_projects=all_projects)


@app.callback()
def _configure_logging(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    level_name = os.environ.get("RECALLMEM_LOG_LEVEL", "DEBUG" if verbose else "WARNING")
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@app.command("init-db")
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_db_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def remember(
    title: str = typer.Option(..., help="Short title"),
    content: str = typer.Option(..., help="Observation body"),
    obs_type: str = typer.Option("discovery", "--type", help="Observation or knowledge type"),
    concept: list[str] = typer.Option(None, "--concept", help="Concept tag (repeatable)"),
    file: list[str] = typer.Option(None, "--file", help="Related file (repeatable)"),
    metadata: str = typer.Option(None, help="Knowledge metadata as a JSON object"),
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Store an observation, or a knowledge item for knowledge types."""
    remember_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        obs_type=obs_type,
        title=title,
        content=content,
        concepts=concept or None,
        files=file or None,
        metadata=metadata,
        project=project,
    )


@app.command()
def search(
    query: str,
    limit: int = typer.Option(10, help="Max results"),
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    all_projects: bool = typer.Option(False, help="Search across all projects"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Search observations by keyword and semantic similarity."""
    search_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        query=query,
        limit=limit,
        project=project,
        all_projects=all_projects,
        as_json=as_json,
    )


@app.command()
def context(
    query: str = typer.Option(None, help="Optional query to focus the context"),
    token_budget: int = typer.Option(None, help="Token budget (defaults to config)"),
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Build a token-budgeted context block for a project."""
    context_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        query=query,
        token_budget=token_budget,
        project=project,
        as_json=as_json,
    )


@app.command()
def recent(
    limit: int = typer.Option(None, help="Page size"),
    cursor: str = typer.Option(None, help="Cursor from a previous page"),
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    all_projects: bool = typer.Option(False, help="List across all projects"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show recent observations, newest first."""
    recent_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        limit=limit,
        cursor=cursor,
        project=project,
        all_projects=all_projects,
    )


@app.command()
def stats(
    project: str = typer.Option(None, help="Also show stats for this project"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show database statistics."""
    stats_cmd(store_from_path=_store, db_path=db_path, project=project)


@app.command()
def embed(
    batch_size: int = typer.Option(50, help="Max observations to embed"),
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    all_projects: bool = typer.Option(False, help="Embed across all projects"),
    dry_run: bool = typer.Option(False, help="Report without writing"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Backfill embeddings for observations that have none."""
    embed_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        batch_size=batch_size,
        project=project,
        all_projects=all_projects,
        dry_run=dry_run,
    )


@app.command()
def stale(
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    root: str = typer.Option(None, help="Directory relative file paths resolve against"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Mark observations stale when their modified files changed since."""
    stale_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        project=project,
        root=root,
    )


@app.command()
def consolidate(
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    min_group_size: int = typer.Option(None, help="Smallest group to merge (defaults to config)"),
    dry_run: bool = typer.Option(False, help="Report without writing"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Merge repeated observations about the same files."""
    consolidate_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        project=project,
        min_group_size=min_group_size,
        dry_run=dry_run,
    )


@app.command()
def purge(
    older_than_days: int = typer.Option(..., help="Delete observations older than this"),
    project: str = typer.Option(None, help="Project identifier (defaults to cwd name)"),
    all_projects: bool = typer.Option(False, help="Purge across all projects"),
    dry_run: bool = typer.Option(False, help="Report without writing"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Delete old observations. Knowledge items are never purged."""
    purge_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        older_than_days=older_than_days,
        project=project,
        all_projects=all_projects,
        dry_run=dry_run,
    )


@app.command("export")
def export_records(
    output: str = typer.Argument(..., help="Output file path (use '-' for stdout)"),
    project: str = typer.Option(None, help="Filter by project (defaults to cwd name)"),
    all_projects: bool = typer.Option(False, help="Export all projects"),
    since: str = typer.Option(None, help="Only records created at or after (ISO date)"),
    until: str = typer.Option(None, help="Only records created at or before (ISO date)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Export records as JSON lines for sharing or backup."""
    export_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        output=output,
        project=project,
        all_projects=all_projects,
        since=since,
        until=until,
    )


@app.command("import")
def import_records(
    input_file: str = typer.Argument(..., help="Input JSON lines file (use '-' for stdin)"),
    dry_run: bool = typer.Option(False, help="Preview import without writing"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Import records from a JSON lines export."""
    import_cmd(
        store_from_path=_store,
        db_path=db_path,
        input_file=input_file,
        dry_run=dry_run,
    )


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
