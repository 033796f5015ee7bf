from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..db import rows_to_dicts
from . import maintenance as store_maintenance
from . import vectors as store_vectors

if TYPE_CHECKING:
    from ._store import MemoryStore

_TIMELINE_COLUMNS = "id, type, title, text AS content, project, created_at, created_at_epoch"


def timeline(
    store: MemoryStore, anchor_id: int, before: int = 5, after: int = 5
) -> list[dict[str, Any]]:
    """Observations of the anchor's project around it, chronological, anchor included."""
    anchor = store.conn.execute(
        f"SELECT {_TIMELINE_COLUMNS} FROM observations WHERE id = ?", (anchor_id,)
    ).fetchone()
    if anchor is None:
        return []
    epoch = int(anchor["created_at_epoch"])
    project = anchor["project"]
    earlier = store.conn.execute(
        f"""
        SELECT {_TIMELINE_COLUMNS} FROM observations
        WHERE project = ? AND (created_at_epoch < ? OR (created_at_epoch = ? AND id < ?))
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT ?
        """,
        (project, epoch, epoch, anchor_id, before),
    ).fetchall()
    later = store.conn.execute(
        f"""
        SELECT {_TIMELINE_COLUMNS} FROM observations
        WHERE project = ? AND (created_at_epoch > ? OR (created_at_epoch = ? AND id > ?))
        ORDER BY created_at_epoch ASC, id ASC
        LIMIT ?
        """,
        (project, epoch, epoch, anchor_id, after),
    ).fetchall()
    return rows_to_dicts(reversed(earlier)) + [dict(anchor)] + rows_to_dicts(later)


def _count(store: MemoryStore, table: str, project: str) -> int:
    row = store.conn.execute(
        f"SELECT COUNT(*) AS cnt FROM {table} WHERE project = ?", (project,)
    ).fetchone()
    return int(row["cnt"])


def project_stats(store: MemoryStore, project: str) -> dict[str, Any]:
    """Record counts, token economics and embedding coverage for a project.

    Read tokens estimate what re-reading the stored titles and texts
    costs; savings is discovery cost minus that, floored at zero.
    """
    tokens = store.conn.execute(
        """
        SELECT
            COALESCE(SUM(discovery_tokens), 0) AS discovery_tokens,
            COALESCE(SUM(
                (LENGTH(COALESCE(title, '')) + LENGTH(COALESCE(text, '')) + 3) / 4
            ), 0) AS read_tokens
        FROM observations
        WHERE project = ?
        """,
        (project,),
    ).fetchone()
    discovery = int(tokens["discovery_tokens"])
    read = int(tokens["read_tokens"])
    return {
        "project": project,
        "observations": _count(store, "observations", project),
        "summaries": _count(store, "summaries", project),
        "sessions": _count(store, "sessions", project),
        "prompts": _count(store, "prompts", project),
        "token_economics": {
            "discovery_tokens": discovery,
            "read_tokens": read,
            "savings": max(0, discovery - read),
        },
        "embeddings": store_vectors.embedding_stats(store, project),
        "decay": store_maintenance.decay_stats(store, project),
    }
