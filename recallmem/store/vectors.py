from __future__ import annotations

import datetime as dt
import logging
import math
import sqlite3
import struct
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from ..semantic import MAX_EMBED_CHARS, EmbeddingProvider
from .types import VectorHit
from .utils import transaction

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_THRESHOLD = 0.3
DEFAULT_MAX_CANDIDATES = 2000
DEFAULT_BACKFILL_BATCH = 50


def encode_vector(vector: Sequence[float]) -> bytes:
    """Little-endian float32 bytes, 4 per dimension."""
    return struct.pack(f"<{len(vector)}f", *vector)


def decode_vector(blob: bytes) -> list[float]:
    if len(blob) % 4:
        raise ValueError(f"vector blob length {len(blob)} is not a multiple of 4")
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| |b|); 0.0 for empty, mismatched or zero-norm input."""
    if not a or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denominator = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denominator == 0:
        return 0.0
    return dot / denominator


def embedding_text(row: sqlite3.Row | dict[str, Any]) -> str:
    parts = [row["title"], row["text"], row["narrative"], row["concepts"]]
    return " ".join(part for part in parts if part)[:MAX_EMBED_CHARS]


def store_embedding(
    conn: sqlite3.Connection, observation_id: int, vector: Sequence[float], model: str
) -> None:
    """Insert or replace the single embedding owned by an observation."""
    conn.execute(
        """
        INSERT INTO observation_embeddings(observation_id, embedding, model, dimensions, created_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(observation_id) DO UPDATE SET
            embedding = excluded.embedding,
            model = excluded.model,
            dimensions = excluded.dimensions,
            created_at = excluded.created_at
        """,
        (
            observation_id,
            encode_vector(vector),
            model,
            len(vector),
            dt.datetime.now(dt.UTC).isoformat(),
        ),
    )


def _candidate_sql(project: str | None) -> tuple[str, list[Any]]:
    params: list[Any] = []
    where = ""
    if project:
        where = "WHERE o.project = ?"
        params.append(project)
    sql = f"""
        SELECT e.observation_id, e.embedding, o.title, o.text, o.type, o.project,
               o.created_at, o.created_at_epoch, o.is_stale
        FROM observation_embeddings e
        JOIN observations o ON o.id = e.observation_id
        {where}
        ORDER BY o.created_at_epoch DESC, o.id DESC
        LIMIT ?
    """
    return sql, params


def _hit(row: sqlite3.Row, similarity: float) -> VectorHit:
    return VectorHit(
        observation_id=int(row["observation_id"]),
        similarity=similarity,
        title=row["title"],
        text=row["text"],
        type=row["type"],
        project=row["project"],
        created_at=row["created_at"],
        created_at_epoch=int(row["created_at_epoch"]),
        is_stale=bool(row["is_stale"]),
    )


def _score_with_sqlite_vec(
    store: MemoryStore, query_vector: Sequence[float], project: str | None, max_candidates: int
) -> list[VectorHit]:
    candidate_sql, params = _candidate_sql(project)
    rows = store.conn.execute(
        f"""
        SELECT c.*, 1.0 - vec_distance_cosine(c.embedding, ?) AS similarity
        FROM ({candidate_sql}) c
        """,
        [encode_vector(query_vector), *params, max_candidates],
    ).fetchall()
    hits: list[VectorHit] = []
    for row in rows:
        similarity = row["similarity"]
        # Zero-norm vectors score 0, as in cosine_similarity.
        if similarity is None or math.isnan(similarity):
            similarity = 0.0
        hits.append(_hit(row, float(similarity)))
    return hits


def _score_in_process(
    store: MemoryStore, query_vector: Sequence[float], project: str | None, max_candidates: int
) -> list[VectorHit]:
    candidate_sql, params = _candidate_sql(project)
    rows = store.conn.execute(candidate_sql, [*params, max_candidates]).fetchall()
    hits: list[VectorHit] = []
    for row in rows:
        try:
            candidate = decode_vector(row["embedding"])
        except ValueError as exc:
            logger.warning(
                "skipping corrupt embedding for observation %s", row["observation_id"], exc_info=exc
            )
            continue
        hits.append(_hit(row, cosine_similarity(query_vector, candidate)))
    return hits


def search(
    store: MemoryStore,
    query_vector: Sequence[float],
    *,
    project: str | None = None,
    limit: int = DEFAULT_LIMIT,
    threshold: float = DEFAULT_THRESHOLD,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> list[VectorHit]:
    """Nearest observations by cosine similarity.

    Only the `max_candidates` most recent embeddings (per project when given)
    are scored. Similarity runs inside SQLite when sqlite-vec is loaded and
    in Python otherwise, or when the extension rejects the input.
    """
    if not query_vector:
        return []
    query_norm = math.sqrt(sum(value * value for value in query_vector))
    try:
        hits: list[VectorHit] | None = None
        if store.vec_enabled and query_norm > 0:
            try:
                hits = _score_with_sqlite_vec(store, query_vector, project, max_candidates)
            except sqlite3.Error as exc:
                logger.debug("sqlite-vec scoring failed, using in-process cosine: %s", exc)
        if hits is None:
            hits = _score_in_process(store, query_vector, project, max_candidates)
    except sqlite3.Error as exc:
        logger.warning("vector search failed", exc_info=exc)
        return []
    hits = [hit for hit in hits if hit.similarity >= threshold]
    hits.sort(
        key=lambda hit: (hit.similarity, hit.created_at_epoch, hit.observation_id), reverse=True
    )
    return hits[:limit]


def embed_observation(
    conn: sqlite3.Connection, provider: EmbeddingProvider, observation_id: int
) -> bool:
    """Compute and upsert one observation's embedding. Safe to repeat."""
    row = conn.execute(
        "SELECT id, title, text, narrative, concepts FROM observations WHERE id = ?",
        (observation_id,),
    ).fetchone()
    if row is None:
        return False
    text = embedding_text(row)
    if not text.strip():
        return False
    vector = provider.embed(text)
    if not vector:
        return False
    with transaction(conn):
        # The row may have been merged away while the model was running.
        exists = conn.execute(
            "SELECT 1 FROM observations WHERE id = ?", (observation_id,)
        ).fetchone()
        if exists is None:
            return False
        store_embedding(conn, observation_id, vector, provider.model)
    return True


def backfill_vectors(
    store: MemoryStore,
    batch_size: int = DEFAULT_BACKFILL_BATCH,
    *,
    project: str | None = None,
    dry_run: bool = False,
) -> dict[str, int]:
    """Embed up to `batch_size` observations that have no embedding yet.

    Newest observations go first. Items the provider cannot embed are
    counted as skipped and left for a later pass.
    """
    provider = store.provider
    if provider is None or not provider.is_available():
        return {"checked": 0, "embedded": 0, "skipped": 0}
    params: list[Any] = []
    project_clause = ""
    if project:
        project_clause = "AND o.project = ?"
        params.append(project)
    rows = store.conn.execute(
        f"""
        SELECT o.id, o.title, o.text, o.narrative, o.concepts
        FROM observations o
        LEFT JOIN observation_embeddings e ON e.observation_id = o.id
        WHERE e.observation_id IS NULL {project_clause}
        ORDER BY o.created_at_epoch DESC, o.id DESC
        LIMIT ?
        """,
        [*params, batch_size],
    ).fetchall()
    texts = [embedding_text(row) for row in rows]
    vectors = provider.embed_batch(texts)
    embedded = 0
    skipped = 0
    pending: list[tuple[int, list[float]]] = []
    for row, vector in zip(rows, vectors, strict=False):
        if not vector:
            skipped += 1
            continue
        pending.append((int(row["id"]), vector))
        embedded += 1
    if pending and not dry_run:
        with transaction(store.conn):
            for observation_id, vector in pending:
                store_embedding(store.conn, observation_id, vector, provider.model)
    return {"checked": len(rows), "embedded": embedded, "skipped": skipped}


def embedding_stats(store: MemoryStore, project: str | None = None) -> dict[str, Any]:
    params: list[Any] = []
    where = ""
    if project:
        where = "WHERE o.project = ?"
        params.append(project)
    row = store.conn.execute(
        f"""
        SELECT COUNT(*) AS total, COUNT(e.observation_id) AS embedded
        FROM observations o
        LEFT JOIN observation_embeddings e ON e.observation_id = o.id
        {where}
        """,
        params,
    ).fetchone()
    total = int(row["total"] or 0)
    embedded = int(row["embedded"] or 0)
    percentage = round(embedded / total * 100) if total else 0
    return {"total": total, "embedded": embedded, "percentage": percentage}
