from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from ..categorizer import categorize
from ..memory_kinds import (
    READ_TYPES,
    WRITE_TYPES,
    KnowledgeMeta,
    build_knowledge_meta,
    dedup_window_ms,
    dump_knowledge_meta,
    normalize_memory_kind,
    validate_knowledge_type,
)
from ..redaction import redact, redact_optional
from ..scoring import estimate_tokens
from ..semantic import hash_text
from .errors import ValidationError
from .types import Observation
from .utils import clean_ids, iso_from_epoch_ms, join_list, placeholders, transaction

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

DUPLICATE_ID = -1

MAX_TYPE_CHARS = 100
MAX_TITLE_CHARS = 500
MAX_CONTENT_CHARS = 100_000


def content_hash(project: str, obs_type: str, title: str, narrative: str | None = None) -> str:
    """Stable identity over the fields that make two observations "the same"."""
    return hash_text("|".join([project or "", obs_type or "", title or "", narrative or ""]))


def validate_observation_input(
    project: Any, obs_type: Any, title: Any, content: Any = None
) -> None:
    if not isinstance(project, str) or not project.strip():
        raise ValidationError("project is required")
    if not isinstance(obs_type, str) or not obs_type.strip():
        raise ValidationError("type is required")
    if len(obs_type) > MAX_TYPE_CHARS:
        raise ValidationError(f"type too long (max {MAX_TYPE_CHARS} chars)")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required")
    if len(title) > MAX_TITLE_CHARS:
        raise ValidationError(f"title too long (max {MAX_TITLE_CHARS} chars)")
    if content is not None:
        if not isinstance(content, str):
            raise ValidationError("content must be a string")
        if len(content) > MAX_CONTENT_CHARS:
            raise ValidationError(f"content too long (max {MAX_CONTENT_CHARS} chars)")


def find_duplicate(
    store: MemoryStore, digest: str, window_ms: int | None, *, now: int
) -> int | None:
    """Id of an earlier row with this hash inside the window (any age when window is None)."""
    if window_ms is None:
        row = store.conn.execute(
            "SELECT id FROM observations WHERE content_hash = ? LIMIT 1", (digest,)
        ).fetchone()
    else:
        row = store.conn.execute(
            """
            SELECT id FROM observations
            WHERE content_hash = ? AND created_at_epoch > ?
            LIMIT 1
            """,
            (digest, now - window_ms),
        ).fetchone()
    return int(row["id"]) if row else None


def insert_observation(
    store: MemoryStore,
    *,
    session_id: str,
    project: str,
    obs_type: str,
    title: str,
    subtitle: str | None,
    text: str | None,
    narrative: str | None,
    facts: str | None,
    concepts: str | None,
    files_read: str | None,
    files_modified: str | None,
    prompt_number: int,
    digest: str,
    discovery_tokens: int,
    created_at_epoch: int,
    auto_category: str | None = None,
) -> int:
    if store.redact_secrets:
        title = redact(title)
        text = redact_optional(text)
        narrative = redact_optional(narrative)
    if auto_category is None:
        auto_category = categorize(
            obs_type=obs_type,
            title=title,
            text=text,
            narrative=narrative,
            concepts=concepts,
            files_modified=files_modified,
            files_read=files_read,
        )
    cur = store.conn.execute(
        """
        INSERT INTO observations(
            memory_session_id, project, type, title, subtitle, text, narrative, facts,
            concepts, files_read, files_modified, prompt_number, content_hash,
            discovery_tokens, auto_category, created_at, created_at_epoch
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            project,
            obs_type,
            title,
            subtitle,
            text,
            narrative,
            facts,
            concepts,
            files_read,
            files_modified,
            prompt_number,
            digest,
            discovery_tokens,
            auto_category,
            iso_from_epoch_ms(created_at_epoch),
            created_at_epoch,
        ),
    )
    return int(cur.lastrowid or 0)


def store_observation(
    store: MemoryStore,
    *,
    project: str,
    obs_type: str,
    title: str,
    content: str | None = None,
    narrative: str | None = None,
    subtitle: str | None = None,
    concepts: Sequence[str] | None = None,
    files: Sequence[str] | None = None,
    files_read: Sequence[str] | None = None,
    files_modified: Sequence[str] | None = None,
    facts: str | None = None,
    session_id: str | None = None,
    prompt_number: int = 0,
) -> int:
    """Validate, dedup and insert one observation.

    Returns the new id, or DUPLICATE_ID when the same content was stored
    inside the type's dedup window. Embedding happens in the background.
    """
    validate_observation_input(project, obs_type, title, content)
    kind = normalize_memory_kind(obs_type)
    now = store.now_ms()
    digest = content_hash(project, obs_type, title, narrative)
    read_list = files_read or (files if kind in READ_TYPES else None)
    modified_list = files_modified or (files if kind in WRITE_TYPES else None)

    with transaction(store.conn):
        if find_duplicate(store, digest, dedup_window_ms(kind), now=now) is not None:
            logger.debug("duplicate observation skipped: %s", digest)
            return DUPLICATE_ID
        observation_id = insert_observation(
            store,
            session_id=session_id or f"sdk-{now}",
            project=project,
            obs_type=obs_type,
            title=title,
            subtitle=subtitle,
            text=content,
            narrative=narrative,
            facts=facts,
            concepts=join_list(concepts),
            files_read=join_list(read_list),
            files_modified=join_list(modified_list),
            prompt_number=prompt_number,
            digest=digest,
            discovery_tokens=estimate_tokens(content),
            created_at_epoch=now,
        )
    store.schedule_embedding(observation_id)
    return observation_id


def store_knowledge(
    store: MemoryStore,
    *,
    project: str,
    knowledge_type: str,
    title: str,
    content: str,
    metadata: KnowledgeMeta | dict[str, Any] | None = None,
    concepts: Sequence[str] | None = None,
    files: Sequence[str] | None = None,
    session_id: str | None = None,
) -> int:
    """Store a constraint/decision/heuristic/rejected item.

    Knowledge is deduplicated against every earlier row with the same hash,
    whatever its age.
    """
    try:
        kind = validate_knowledge_type(knowledge_type)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    validate_observation_input(project, kind, title, content)
    try:
        if metadata is None or isinstance(metadata, dict):
            meta = build_knowledge_meta(kind, metadata)
        else:
            meta = metadata
        facts = dump_knowledge_meta(kind, meta)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    now = store.now_ms()
    digest = content_hash(project, kind, title)
    with transaction(store.conn):
        if find_duplicate(store, digest, None, now=now) is not None:
            logger.debug("duplicate knowledge skipped: %s", digest)
            return DUPLICATE_ID
        observation_id = insert_observation(
            store,
            session_id=session_id or f"sdk-{now}",
            project=project,
            obs_type=kind,
            title=title,
            subtitle=None,
            text=content,
            narrative=None,
            facts=facts,
            concepts=join_list(concepts),
            files_read=join_list(files),
            files_modified=None,
            prompt_number=0,
            digest=digest,
            discovery_tokens=estimate_tokens(content),
            created_at_epoch=now,
        )
    store.schedule_embedding(observation_id)
    return observation_id


def get_observation(store: MemoryStore, observation_id: int) -> Observation | None:
    row = store.conn.execute(
        "SELECT * FROM observations WHERE id = ?", (observation_id,)
    ).fetchone()
    return Observation.from_row(row) if row else None


def get_observations(store: MemoryStore, ids: Iterable[int]) -> list[Observation]:
    cleaned = clean_ids(ids)
    if not cleaned:
        return []
    rows = store.conn.execute(
        f"""
        SELECT * FROM observations
        WHERE id IN ({placeholders(len(cleaned))})
        ORDER BY created_at_epoch DESC, id DESC
        """,
        cleaned,
    ).fetchall()
    return [Observation.from_row(row) for row in rows]


def observations_by_project(
    store: MemoryStore, project: str, limit: int = 50
) -> list[Observation]:
    rows = store.conn.execute(
        """
        SELECT * FROM observations
        WHERE project = ?
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT ?
        """,
        (project, limit),
    ).fetchall()
    return [Observation.from_row(row) for row in rows]


def delete_observation(store: MemoryStore, observation_id: int) -> bool:
    with transaction(store.conn):
        cur = store.conn.execute("DELETE FROM observations WHERE id = ?", (observation_id,))
    return cur.rowcount > 0


def update_last_accessed(store: MemoryStore, ids: Iterable[int]) -> int:
    cleaned = clean_ids(ids)
    if not cleaned:
        return 0
    with transaction(store.conn):
        cur = store.conn.execute(
            f"""
            UPDATE observations SET last_accessed_epoch = ?
            WHERE id IN ({placeholders(len(cleaned))})
            """,
            [store.now_ms(), *cleaned],
        )
    return cur.rowcount
