from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from .types import LexicalHit, Observation
from .utils import escape_like

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = 10_000
MAX_QUERY_TOKENS = 100
DEFAULT_LIMIT = 50

# bm25() column weights in observations_fts order: title, text, narrative, concepts.
BM25_WEIGHTS = (10.0, 1.0, 3.0, 5.0)
_BM25_ARGS = ", ".join(str(weight) for weight in BM25_WEIGHTS)


def sanitize_fts_query(query: str) -> str:
    """Turn free text into an FTS5 query of quoted, implicitly AND-ed terms."""
    tokens = [token.replace('"', "") for token in query[:MAX_QUERY_CHARS].split()]
    terms = [token for token in tokens if token][:MAX_QUERY_TOKENS]
    return " ".join(f'"{term}"' for term in terms)


def _filters(
    *,
    project: str | None,
    obs_type: str | None,
    date_start: int | None,
    date_end: int | None,
) -> tuple[list[str], list[Any]]:
    where_clauses: list[str] = []
    params: list[Any] = []
    if project:
        where_clauses.append("o.project = ?")
        params.append(project)
    if obs_type:
        where_clauses.append("o.type = ?")
        params.append(obs_type)
    if date_start is not None:
        where_clauses.append("o.created_at_epoch >= ?")
        params.append(date_start)
    if date_end is not None:
        where_clauses.append("o.created_at_epoch <= ?")
        params.append(date_end)
    return where_clauses, params


def _ranked_rows(
    store: MemoryStore,
    fts_query: str,
    *,
    project: str | None,
    obs_type: str | None,
    date_start: int | None,
    date_end: int | None,
    limit: int,
) -> list[sqlite3.Row]:
    where_clauses, params = _filters(
        project=project, obs_type=obs_type, date_start=date_start, date_end=date_end
    )
    where = " AND ".join(["observations_fts MATCH ?", *where_clauses])
    return store.conn.execute(
        f"""
        SELECT o.*, bm25(observations_fts, {_BM25_ARGS}) AS fts5_rank
        FROM observations_fts
        JOIN observations o ON o.id = observations_fts.rowid
        WHERE {where}
        ORDER BY fts5_rank ASC, o.id DESC
        LIMIT ?
        """,
        [fts_query, *params, limit],
    ).fetchall()


def search(
    store: MemoryStore,
    query: str,
    *,
    project: str | None = None,
    obs_type: str | None = None,
    date_start: int | None = None,
    date_end: int | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[Observation]:
    """Full-text search, most relevant first.

    Falls back to a substring scan when the query has no usable terms or
    the full-text index errors out.
    """
    fts_query = sanitize_fts_query(query)
    if fts_query:
        try:
            rows = _ranked_rows(
                store,
                fts_query,
                project=project,
                obs_type=obs_type,
                date_start=date_start,
                date_end=date_end,
                limit=limit,
            )
            return [Observation.from_row(row) for row in rows]
        except sqlite3.Error as exc:
            logger.warning("full-text search failed, using substring scan", exc_info=exc)
    return like_search(
        store,
        query,
        project=project,
        obs_type=obs_type,
        date_start=date_start,
        date_end=date_end,
        limit=limit,
    )


def search_with_rank(
    store: MemoryStore,
    query: str,
    *,
    project: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[LexicalHit]:
    """Ranked variant carrying the raw bm25 value; [] when unavailable."""
    fts_query = sanitize_fts_query(query)
    if not fts_query:
        return []
    try:
        rows = _ranked_rows(
            store,
            fts_query,
            project=project,
            obs_type=None,
            date_start=None,
            date_end=None,
            limit=limit,
        )
    except sqlite3.Error as exc:
        logger.warning("ranked full-text search failed", exc_info=exc)
        return []
    return [
        LexicalHit(observation=Observation.from_row(row), rank=float(row["fts5_rank"]))
        for row in rows
    ]


def like_search(
    store: MemoryStore,
    query: str,
    *,
    project: str | None = None,
    obs_type: str | None = None,
    date_start: int | None = None,
    date_end: int | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[Observation]:
    pattern = f"%{escape_like(query.strip())}%"
    where_clauses, params = _filters(
        project=project, obs_type=obs_type, date_start=date_start, date_end=date_end
    )
    where_clauses.insert(
        0,
        "(o.title LIKE ? ESCAPE '\\' OR o.text LIKE ? ESCAPE '\\' "
        "OR o.narrative LIKE ? ESCAPE '\\' OR o.concepts LIKE ? ESCAPE '\\')",
    )
    params = [pattern, pattern, pattern, pattern, *params]
    rows = store.conn.execute(
        f"""
        SELECT o.* FROM observations o
        WHERE {" AND ".join(where_clauses)}
        ORDER BY o.created_at_epoch DESC, o.id DESC
        LIMIT ?
        """,
        [*params, limit],
    ).fetchall()
    return [Observation.from_row(row) for row in rows]
