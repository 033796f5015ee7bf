from __future__ import annotations

import os

from rich import print

from .common import exit_on_input_error


def init_db_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    store = store_from_path(db_path)
    try:
        print(f"Initialized database at {store.db_path}")
    finally:
        store.close()


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    return f"{size / 1024 / 1024 / 1024:.1f} GB"


def _format_tokens(count: int) -> str:
    return f"{count:,}"


def stats_cmd(*, store_from_path, db_path: str | None, project: str | None) -> None:
    store = store_from_path(db_path)
    try:
        stats_data = store.stats()
        project_data = store.project_stats(project) if project else None
    finally:
        store.close()

    db_stats = stats_data["database"]
    embeddings = stats_data["embeddings"]
    decay = stats_data["decay"]

    print("[bold]Database[/bold]")
    print(f"- Path: {db_stats['path']}")
    print(f"- Size: {_format_bytes(int(db_stats['size_bytes']))}")
    print(f"- Schema version: {db_stats['schema_version']}")
    print(f"- sqlite-vec: {db_stats['sqlite_vec'] or 'not loaded'}")
    print(f"- Sessions: {db_stats['sessions']}")
    print(f"- Observations: {db_stats['observations']}")
    print(f"- Summaries: {db_stats['summaries']}")
    print(f"- Prompts: {db_stats['prompts']}")
    print(f"- Checkpoints: {db_stats['checkpoints']}")

    print("\n[bold]Embeddings[/bold]")
    print(
        f"- {embeddings['embedded']}/{embeddings['total']} observations "
        f"({embeddings['percentage']}%)"
    )

    print("\n[bold]Decay[/bold]")
    print(f"- Stale: {decay['stale']}")
    print(f"- Never accessed: {decay['never_accessed']}")
    print(f"- Accessed in last 48h: {decay['recently_accessed']}")

    if project_data is None:
        return
    economics = project_data["token_economics"]
    print(f"\n[bold]Project {project_data['project']}[/bold]")
    print(f"- Observations: {project_data['observations']}")
    print(f"- Summaries: {project_data['summaries']}")
    print(
        f"- Discovery ~{_format_tokens(economics['discovery_tokens'])} tokens, "
        f"read ~{_format_tokens(economics['read_tokens'])} tokens, "
        f"saved ~{_format_tokens(economics['savings'])} tokens"
    )


def embed_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    batch_size: int,
    project: str | None,
    all_projects: bool,
    dry_run: bool,
) -> None:
    store = store_from_path(db_path)
    try:
        if store.provider is None:
            print("[yellow]Embeddings are disabled; nothing to do[/yellow]")
            return
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        result = store.backfill_vectors(batch_size, project=resolved_project, dry_run=dry_run)
    finally:
        store.close()

    action = "Would embed" if dry_run else "Embedded"
    print(f"{action} {result['embedded']} vectors ({result['skipped']} skipped)")
    print(f"Checked {result['checked']} observations")


def stale_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    project: str | None,
    root: str | None,
) -> None:
    """Flag observations whose modified files changed after capture."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=False)
        stale_ids = store.detect_stale_observations(resolved_project, root=root or os.getcwd())
    finally:
        store.close()
    if not stale_ids:
        print("No stale observations")
        return
    print(f"Marked {len(stale_ids)} observations stale: {', '.join(map(str, stale_ids))}")


def consolidate_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    project: str | None,
    min_group_size: int | None,
    dry_run: bool,
) -> None:
    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=False)
        result = store.consolidate_observations(
            resolved_project, min_group_size=min_group_size, dry_run=dry_run
        )
        store.drain_embeddings(timeout=60)
    finally:
        store.close()
    action = "Would merge" if dry_run else "Merged"
    print(f"{action} {result['merged']} groups ({result['removed']} observations removed)")


def purge_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    older_than_days: int,
    project: str | None,
    all_projects: bool,
    dry_run: bool,
) -> None:
    """Delete old non-knowledge observations."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        try:
            count = store.purge_observations(
                max_age_days=older_than_days, project=resolved_project, dry_run=dry_run
            )
        except ValueError as exc:
            exit_on_input_error(exc)
    finally:
        store.close()
    action = "Would delete" if dry_run else "Deleted"
    print(f"{action} {count} observations older than {older_than_days} days")
