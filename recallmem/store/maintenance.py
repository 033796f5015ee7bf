from __future__ import annotations

import logging
import os
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..memory_kinds import KNOWLEDGE_TYPES
from .types import ConsolidationResult, split_files
from .utils import clean_ids, placeholders, transaction

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

CONSOLIDATED_SEPARATOR = "\n---\n"
MAX_CONSOLIDATED_CHARS = 100_000
RECENT_ACCESS_WINDOW_MS = 48 * 3_600_000


def file_mtime_ms(path: Path) -> int | None:
    """Modification time in epoch ms, or None when the file cannot be stat'ed."""
    try:
        return int(os.stat(path).st_mtime * 1000)
    except OSError:
        return None


def _resolve(file_path: str, root: Path | None) -> Path:
    path = Path(file_path).expanduser()
    if root is not None and not path.is_absolute():
        return root / path
    return path


def find_stale_observations(
    store: MemoryStore,
    project: str,
    *,
    root: Path | str | None = None,
    limit: int | None = None,
) -> list[int]:
    """Ids of recent observations whose modified files changed after capture.

    Relative paths resolve against `root` (the process cwd when None). Files
    that no longer exist never make an observation stale.
    """
    base = Path(root).expanduser() if root is not None else None
    rows = store.conn.execute(
        """
        SELECT id, files_modified, created_at_epoch FROM observations
        WHERE project = ? AND files_modified IS NOT NULL AND files_modified != ''
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT ?
        """,
        (project, limit or store.config.stale_scan_limit),
    ).fetchall()
    stale: list[int] = []
    for row in rows:
        created = int(row["created_at_epoch"])
        for file_path in split_files(row["files_modified"]):
            mtime = file_mtime_ms(_resolve(file_path, base))
            if mtime is not None and mtime > created:
                stale.append(int(row["id"]))
                break
    return stale


def mark_observations_stale(store: MemoryStore, ids: Iterable[int], stale: bool = True) -> int:
    cleaned = clean_ids(ids)
    if not cleaned:
        return 0
    with transaction(store.conn):
        cur = store.conn.execute(
            f"UPDATE observations SET is_stale = ? WHERE id IN ({placeholders(len(cleaned))})",
            [1 if stale else 0, *cleaned],
        )
    return cur.rowcount


def detect_stale_observations(
    store: MemoryStore, project: str, *, root: Path | str | None = None
) -> list[int]:
    stale_ids = find_stale_observations(store, project, root=root)
    if stale_ids:
        mark_observations_stale(store, stale_ids, True)
        logger.info("marked %d observations stale in %s", len(stale_ids), project)
    return stale_ids


def _candidate_groups(
    store: MemoryStore, project: str, min_group_size: int
) -> list[sqlite3.Row]:
    return store.conn.execute(
        """
        SELECT type, files_modified, COUNT(*) AS cnt
        FROM observations
        WHERE project = ? AND files_modified IS NOT NULL AND files_modified != ''
        GROUP BY type, files_modified
        HAVING cnt >= ?
        ORDER BY cnt DESC
        """,
        (project, min_group_size),
    ).fetchall()


def _merge_group(
    store: MemoryStore, project: str, obs_type: str, files_modified: str, min_group_size: int
) -> int:
    """Merge one group into its newest row; returns the number of rows removed."""
    with transaction(store.conn):
        rows = store.conn.execute(
            """
            SELECT id, title, text FROM observations
            WHERE project = ? AND type = ? AND files_modified = ?
            ORDER BY created_at_epoch DESC, id DESC
            """,
            (project, obs_type, files_modified),
        ).fetchall()
        if len(rows) < min_group_size:
            return 0
        keeper = rows[0]
        texts: list[str] = []
        for row in rows:
            text = row["text"]
            if text and text not in texts:
                texts.append(text)
        merged_text = CONSOLIDATED_SEPARATOR.join(texts)[:MAX_CONSOLIDATED_CHARS]
        store.conn.execute(
            "UPDATE observations SET title = ?, text = ? WHERE id = ?",
            (f"[consolidated x{len(rows)}] {keeper['title']}", merged_text, keeper["id"]),
        )
        removed_ids = [int(row["id"]) for row in rows[1:]]
        marks = placeholders(len(removed_ids))
        store.conn.execute(
            f"DELETE FROM observation_embeddings WHERE observation_id IN ({marks})", removed_ids
        )
        store.conn.execute(f"DELETE FROM observations WHERE id IN ({marks})", removed_ids)
    # Refresh the keeper's vector for its merged text.
    store.schedule_embedding(int(keeper["id"]))
    return len(removed_ids)


def consolidate_observations(
    store: MemoryStore,
    project: str,
    *,
    min_group_size: int | None = None,
    dry_run: bool = False,
) -> ConsolidationResult:
    """Merge duplicate observations sharing (project, type, files_modified).

    Each group merges in its own transaction. A dry run recounts live group
    membership but writes nothing; its numbers are an estimate for a later
    real run, not a guarantee.
    """
    threshold = min_group_size or store.config.consolidate_min_group_size
    merged = 0
    removed = 0
    for group in _candidate_groups(store, project, threshold):
        if dry_run:
            row = store.conn.execute(
                """
                SELECT COUNT(*) AS cnt FROM observations
                WHERE project = ? AND type = ? AND files_modified = ?
                """,
                (project, group["type"], group["files_modified"]),
            ).fetchone()
            live = int(row["cnt"])
            if live >= threshold:
                merged += 1
                removed += live - 1
            continue
        try:
            count = _merge_group(
                store, project, group["type"], group["files_modified"], threshold
            )
        except sqlite3.Error:
            logger.exception(
                "consolidation failed for %s/%s (%s)",
                project,
                group["type"],
                group["files_modified"],
            )
            raise
        if count:
            merged += 1
            removed += count
    if merged and not dry_run:
        logger.info("consolidated %d groups (%d rows removed) in %s", merged, removed, project)
    return {"merged": merged, "removed": removed}


def decay_stats(store: MemoryStore, project: str | None = None) -> dict[str, int]:
    params: list[Any] = [store.now_ms() - RECENT_ACCESS_WINDOW_MS]
    where = ""
    if project:
        where = "WHERE project = ?"
        params.append(project)
    row = store.conn.execute(
        f"""
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(CASE WHEN is_stale = 1 THEN 1 ELSE 0 END), 0) AS stale,
            COALESCE(SUM(CASE WHEN last_accessed_epoch IS NULL THEN 1 ELSE 0 END), 0)
                AS never_accessed,
            COALESCE(SUM(CASE WHEN last_accessed_epoch > ? THEN 1 ELSE 0 END), 0)
                AS recently_accessed
        FROM observations
        {where}
        """,
        params,
    ).fetchone()
    return {
        "total": int(row["total"]),
        "stale": int(row["stale"]),
        "never_accessed": int(row["never_accessed"]),
        "recently_accessed": int(row["recently_accessed"]),
    }


def purge_observations(
    store: MemoryStore,
    *,
    max_age_days: int,
    project: str | None = None,
    dry_run: bool = False,
) -> int:
    """Delete observations older than `max_age_days`. Knowledge items are kept."""
    if max_age_days <= 0:
        raise ValueError("max_age_days must be positive")
    cutoff = store.now_ms() - max_age_days * 86_400_000
    where_clauses = [
        "created_at_epoch < ?",
        f"type NOT IN ({placeholders(len(KNOWLEDGE_TYPES))})",
    ]
    params: list[Any] = [cutoff, *KNOWLEDGE_TYPES]
    if project:
        where_clauses.append("project = ?")
        params.append(project)
    where = " AND ".join(where_clauses)
    if dry_run:
        row = store.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM observations WHERE {where}", params
        ).fetchone()
        return int(row["cnt"])
    with transaction(store.conn):
        cur = store.conn.execute(f"DELETE FROM observations WHERE {where}", params)
    return cur.rowcount
