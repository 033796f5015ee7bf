from __future__ import annotations

import os
from pathlib import Path
from typing import NoReturn

import typer
from rich import print

from ..store import InvalidCursorError, MemoryStore, ValidationError


def store_from_path(db_path: str | None) -> MemoryStore:
    return MemoryStore(db_path)


def resolve_project_for_cli(cwd: str, project: str | None, *, all_projects: bool) -> str | None:
    if all_projects:
        return None
    if project and project.strip():
        return project.strip()
    env_project = os.environ.get("RECALLMEM_PROJECT")
    if env_project:
        return env_project
    return Path(cwd).resolve().name


def exit_on_input_error(exc: ValidationError | InvalidCursorError | ValueError) -> NoReturn:
    print(f"[red]{exc}[/red]")
    raise typer.Exit(code=1) from exc


def compact_line(text: str | None, limit: int = 160) -> str:
    collapsed = " ".join((text or "").split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 3].rstrip() + "..."
