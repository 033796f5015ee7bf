from __future__ import annotations

import json
import os

import typer
from rich import print
from rich.markup import escape

from ..memory_kinds import is_knowledge_type
from ..store import InvalidCursorError, ValidationError
from .common import compact_line, exit_on_input_error


def remember_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    obs_type: str,
    title: str,
    content: str,
    concepts: list[str] | None,
    files: list[str] | None,
    metadata: str | None,
    project: str | None,
) -> None:
    """Manually store an observation or knowledge item."""

    meta = None
    if metadata:
        try:
            meta = json.loads(metadata)
        except json.JSONDecodeError as exc:
            print(f"[red]Invalid --metadata JSON: {exc}[/red]")
            raise typer.Exit(code=1) from exc
    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=False)
        try:
            if is_knowledge_type(obs_type):
                obs_id = store.store_knowledge(
                    project=resolved_project,
                    knowledge_type=obs_type,
                    title=title,
                    content=content,
                    metadata=meta,
                    concepts=concepts,
                    files=files,
                )
            else:
                obs_id = store.store_observation(
                    project=resolved_project,
                    obs_type=obs_type,
                    title=title,
                    content=content,
                    concepts=concepts,
                    files=files,
                )
        except ValidationError as exc:
            exit_on_input_error(exc)
        store.drain_embeddings(timeout=30)
    finally:
        store.close()
    if obs_id < 0:
        print("[yellow]Duplicate observation skipped[/yellow]")
        return
    print(f"Stored observation {obs_id}")


def search_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    query: str,
    limit: int,
    project: str | None,
    all_projects: bool,
    as_json: bool,
) -> None:
    """Search observations by keyword and semantic similarity."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        results = store.hybrid_search(query, project=resolved_project, limit=limit)
    finally:
        store.close()
    if as_json:
        typer.echo(json.dumps([item.__dict__ for item in results], indent=2))
        return
    if not results:
        print("[yellow]No matching observations[/yellow]")
        return
    for item in results:
        print(
            f"[{item.id}] ({item.type}) {escape(item.title)}\n"
            f"{escape(compact_line(item.content))}\n"
            f"score={item.score:.2f} source={item.source}\n"
        )


def context_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    query: str | None,
    token_budget: int | None,
    project: str | None,
    as_json: bool,
) -> None:
    """Print a token-budgeted context block for a project."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=False)
        context = store.smart_context(resolved_project, query=query, token_budget=token_budget)
    finally:
        store.close()
    if as_json:
        payload = {
            "project": context.project,
            "token_budget": context.token_budget,
            "tokens_used": context.tokens_used,
            "items": [item.__dict__ for item in context.items],
            "summaries": context.summaries,
        }
        typer.echo(json.dumps(payload, indent=2))
        return
    print(
        f"[bold]Context for {context.project}[/bold] "
        f"({context.tokens_used}/{context.token_budget} tokens)"
    )
    if context.summaries:
        print("\n[bold]Recent summaries[/bold]")
        for summary in context.summaries:
            line = compact_line(summary.get("request") or summary.get("learned"))
            print(f"- {escape(line)}")
    if not context.items:
        print("\n[yellow]No observations in budget[/yellow]")
        return
    print("\n[bold]Observations[/bold]")
    for item in context.items:
        marker = "*" if item.is_knowledge else "-"
        print(f"{marker} [{item.id}] ({item.type}) {escape(item.title)}")


def recent_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    limit: int | None,
    cursor: str | None,
    project: str | None,
    all_projects: bool,
) -> None:
    """Show recent observations, newest first, one page at a time."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        try:
            page = store.list_observations(project=resolved_project, cursor=cursor, limit=limit)
        except InvalidCursorError as exc:
            exit_on_input_error(exc)
    finally:
        store.close()
    if not page.items:
        print("[yellow]No observations[/yellow]")
        return
    for item in page.items:
        stale = " \\[stale]" if item.get("is_stale") else ""
        print(f"[{item['id']}] ({item['type']}) {escape(item['title'])}{stale}")
    if page.next_cursor:
        print(f"\nNext page: --cursor {page.next_cursor}")
