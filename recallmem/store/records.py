from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from ..db import rows_to_dicts
from ..redaction import redact
from ..scoring import estimate_tokens
from .errors import ValidationError
from .utils import iso_from_epoch_ms, join_list, transaction

if TYPE_CHECKING:
    from ._store import MemoryStore

MAX_SUMMARY_FIELD_CHARS = 50_000
SNAPSHOT_OBSERVATIONS = 10
SNAPSHOT_TEXT_CHARS = 200

SUMMARY_FIELDS = ("request", "investigated", "learned", "completed", "next_steps", "notes")


def get_or_create_session(
    store: MemoryStore,
    content_session_id: str,
    project: str,
    user_prompt: str | None = None,
) -> int:
    if not content_session_id or not project:
        raise ValidationError("content_session_id and project are required")
    with transaction(store.conn):
        row = store.conn.execute(
            "SELECT id FROM sessions WHERE content_session_id = ?", (content_session_id,)
        ).fetchone()
        if row is not None:
            return int(row["id"])
        now = store.now_ms()
        cur = store.conn.execute(
            """
            INSERT INTO sessions(
                content_session_id, project, user_prompt, status, started_at, started_at_epoch
            )
            VALUES (?, ?, ?, 'active', ?, ?)
            """,
            (content_session_id, project, user_prompt, iso_from_epoch_ms(now), now),
        )
    return int(cur.lastrowid or 0)


def get_session(store: MemoryStore, session_id: int) -> dict[str, Any] | None:
    row = store.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    return dict(row) if row else None


def complete_session(store: MemoryStore, session_id: int) -> bool:
    now = store.now_ms()
    with transaction(store.conn):
        cur = store.conn.execute(
            """
            UPDATE sessions
            SET status = 'completed', completed_at = ?, completed_at_epoch = ?
            WHERE id = ?
            """,
            (iso_from_epoch_ms(now), now, session_id),
        )
    return cur.rowcount > 0


def store_prompt(
    store: MemoryStore,
    content_session_id: str,
    project: str,
    prompt_number: int,
    prompt_text: str,
) -> int:
    if not isinstance(prompt_text, str) or not prompt_text.strip():
        raise ValidationError("prompt_text is required")
    text = prompt_text.strip()
    if store.redact_secrets:
        text = redact(text)
    now = store.now_ms()
    with transaction(store.conn):
        cur = store.conn.execute(
            """
            INSERT INTO prompts(
                content_session_id, project, prompt_number, prompt_text, created_at, created_at_epoch
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (content_session_id, project, prompt_number, text, iso_from_epoch_ms(now), now),
        )
    return int(cur.lastrowid or 0)


def prompts_by_session(store: MemoryStore, content_session_id: str) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        """
        SELECT * FROM prompts
        WHERE content_session_id = ?
        ORDER BY prompt_number ASC, id ASC
        """,
        (content_session_id,),
    ).fetchall()
    return rows_to_dicts(rows)


def validate_summary_input(fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")
        if len(value) > MAX_SUMMARY_FIELD_CHARS:
            raise ValidationError(f"{name} too long (max {MAX_SUMMARY_FIELD_CHARS} chars)")


def store_summary(
    store: MemoryStore,
    project: str,
    *,
    session_id: str | None = None,
    request: str | None = None,
    investigated: str | None = None,
    learned: str | None = None,
    completed: str | None = None,
    next_steps: str | None = None,
    notes: str | None = None,
) -> int:
    if not project:
        raise ValidationError("project is required")
    fields = {
        "request": request,
        "investigated": investigated,
        "learned": learned,
        "completed": completed,
        "next_steps": next_steps,
        "notes": notes,
    }
    validate_summary_input(fields)
    now = store.now_ms()
    discovery_tokens = estimate_tokens("".join(value or "" for value in fields.values()))
    with transaction(store.conn):
        cur = store.conn.execute(
            """
            INSERT INTO summaries(
                session_id, project, request, investigated, learned, completed, next_steps,
                notes, discovery_tokens, created_at, created_at_epoch
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id or f"sdk-{now}",
                project,
                *fields.values(),
                discovery_tokens,
                iso_from_epoch_ms(now),
                now,
            ),
        )
    return int(cur.lastrowid or 0)


def summaries_by_project(
    store: MemoryStore, project: str, limit: int = 10
) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        """
        SELECT * FROM summaries
        WHERE project = ?
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT ?
        """,
        (project, limit),
    ).fetchall()
    return rows_to_dicts(rows)


def create_checkpoint(
    store: MemoryStore,
    session_id: int,
    project: str,
    task: str,
    *,
    progress: str | None = None,
    next_steps: str | None = None,
    open_questions: str | None = None,
    relevant_files: Sequence[str] | None = None,
) -> int:
    """Save a resumable checkpoint with a snapshot of recent project observations."""
    if not task or not task.strip():
        raise ValidationError("task is required")
    recent = store.conn.execute(
        """
        SELECT id, type, title, text FROM observations
        WHERE project = ?
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT ?
        """,
        (project, SNAPSHOT_OBSERVATIONS),
    ).fetchall()
    snapshot = [
        {
            "id": row["id"],
            "type": row["type"],
            "title": row["title"],
            "text": (row["text"] or "")[:SNAPSHOT_TEXT_CHARS],
        }
        for row in recent
    ]
    now = store.now_ms()
    with transaction(store.conn):
        cur = store.conn.execute(
            """
            INSERT INTO checkpoints(
                session_id, project, task, progress, next_steps, open_questions,
                relevant_files, context_snapshot, created_at, created_at_epoch
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                project,
                task,
                progress,
                next_steps,
                open_questions,
                join_list(relevant_files),
                json.dumps(snapshot, ensure_ascii=False),
                iso_from_epoch_ms(now),
                now,
            ),
        )
    return int(cur.lastrowid or 0)


def get_checkpoint(store: MemoryStore, session_id: int) -> dict[str, Any] | None:
    row = store.conn.execute(
        """
        SELECT * FROM checkpoints
        WHERE session_id = ?
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT 1
        """,
        (session_id,),
    ).fetchone()
    return dict(row) if row else None


def latest_project_checkpoint(store: MemoryStore, project: str) -> dict[str, Any] | None:
    row = store.conn.execute(
        """
        SELECT * FROM checkpoints
        WHERE project = ?
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT 1
        """,
        (project,),
    ).fetchone()
    return dict(row) if row else None
