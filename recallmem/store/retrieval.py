from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..memory_kinds import is_knowledge_type
from ..scoring import (
    CONTEXT_WEIGHTS,
    SEARCH_WEIGHTS,
    ScoringSignals,
    ScoringWeights,
    estimate_tokens,
    final_score,
    normalize_fts_rank,
    project_match_score,
    recency_score,
)
from . import lexical as store_lexical
from . import observations as store_observations
from . import records as store_records
from . import vectors as store_vectors
from .types import ContextItem, SearchResult, SmartContext

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
CONTEXT_CANDIDATES = 30
CONTEXT_SUMMARIES = 5


@dataclass
class _Candidate:
    id: int
    title: str
    content: str
    type: str
    project: str
    created_at: str
    created_at_epoch: int
    semantic: float = 0.0
    rank: float | None = None
    is_stale: bool = False


def _vector_candidates(
    store: MemoryStore, query: str, *, project: str | None, limit: int
) -> list[_Candidate]:
    provider = store.provider
    if provider is None or not provider.is_available():
        return []
    try:
        query_vector = provider.embed(query)
        if not query_vector:
            return []
        hits = store_vectors.search(
            store,
            query_vector,
            project=project,
            limit=limit,
            threshold=store.config.vector_threshold,
            max_candidates=store.config.vector_max_candidates,
        )
    except Exception as exc:
        logger.warning("vector search failed, continuing with keyword search", exc_info=exc)
        return []
    return [
        _Candidate(
            id=hit.observation_id,
            title=hit.title,
            content=hit.text or "",
            type=hit.type,
            project=hit.project,
            created_at=hit.created_at,
            created_at_epoch=hit.created_at_epoch,
            semantic=hit.similarity,
            is_stale=hit.is_stale,
        )
        for hit in hits
    ]


def hybrid_search(
    store: MemoryStore,
    query: str,
    *,
    project: str | None = None,
    limit: int = DEFAULT_LIMIT,
    weights: ScoringWeights = SEARCH_WEIGHTS,
) -> list[SearchResult]:
    """Rank observations for a query using vector and keyword signals.

    Each source is asked for twice the limit. A missing or failing source
    only removes its signal. Returned ids get their last-accessed time bumped.
    """
    candidates: dict[int, _Candidate] = {}
    for candidate in _vector_candidates(store, query, project=project, limit=limit * 2):
        candidates[candidate.id] = candidate

    for hit in store_lexical.search_with_rank(store, query, project=project, limit=limit * 2):
        obs = hit.observation
        existing = candidates.get(obs.id)
        if existing is not None:
            existing.rank = hit.rank
            continue
        candidates[obs.id] = _Candidate(
            id=obs.id,
            title=obs.title,
            content=obs.text or obs.narrative or "",
            type=obs.type,
            project=obs.project,
            created_at=obs.created_at,
            created_at_epoch=obs.created_at_epoch,
            rank=hit.rank,
            is_stale=obs.is_stale,
        )

    ranks = [c.rank for c in candidates.values() if c.rank is not None]
    now = store.now_ms()
    results: list[SearchResult] = []
    for c in candidates.values():
        signals = ScoringSignals(
            semantic=c.semantic,
            lexical=normalize_fts_rank(c.rank, ranks) if c.rank is not None else 0.0,
            recency=recency_score(c.created_at_epoch, now=now),
            project_match=project_match_score(c.project, project),
        )
        found_by_both = c.semantic > 0 and c.rank is not None
        if found_by_both:
            source = "hybrid"
        elif c.rank is not None:
            source = "keyword"
        else:
            source = "vector"
        results.append(
            SearchResult(
                id=c.id,
                title=c.title,
                content=c.content,
                type=c.type,
                project=c.project,
                created_at=c.created_at,
                created_at_epoch=c.created_at_epoch,
                score=final_score(
                    signals, weights, kind=c.type, hybrid=found_by_both, stale=c.is_stale
                ),
                source=source,
                signals={
                    "semantic": signals.semantic,
                    "lexical": signals.lexical,
                    "recency": signals.recency,
                    "project_match": signals.project_match,
                },
            )
        )

    results.sort(key=lambda r: (r.score, r.created_at_epoch, r.id), reverse=True)
    results = results[:limit]

    if results:
        try:
            store_observations.update_last_accessed(store, [r.id for r in results])
        except sqlite3.Error as exc:
            logger.warning("last-accessed update failed", exc_info=exc)
    return results


def _context_ranking(store: MemoryStore, project: str) -> list[ContextItem]:
    now = store.now_ms()
    knowledge: list[ContextItem] = []
    normal: list[ContextItem] = []
    for obs in store_observations.observations_by_project(store, project, CONTEXT_CANDIDATES):
        signals = ScoringSignals(
            recency=recency_score(obs.created_at_epoch, now=now),
            project_match=project_match_score(obs.project, project),
        )
        item = ContextItem(
            id=obs.id,
            title=obs.title,
            content=obs.text or obs.narrative or "",
            type=obs.type,
            project=obs.project,
            created_at=obs.created_at,
            created_at_epoch=obs.created_at_epoch,
            score=final_score(signals, CONTEXT_WEIGHTS, kind=obs.type, stale=obs.is_stale),
            tokens=0,
            is_knowledge=is_knowledge_type(obs.type),
        )
        (knowledge if item.is_knowledge else normal).append(item)
    # Stable sorts keep the newest-first order between equal scores.
    knowledge.sort(key=lambda item: item.score, reverse=True)
    normal.sort(key=lambda item: item.score, reverse=True)
    return knowledge + normal


def smart_context(
    store: MemoryStore,
    project: str,
    *,
    query: str | None = None,
    token_budget: int | None = None,
) -> SmartContext:
    """Best context for a project that fits in a token budget.

    With a query, items come from hybrid_search. Without one they are ranked
    by recency and project affinity, knowledge items first. Items are taken
    in order until the next one would overflow the budget.
    """
    budget = token_budget or store.config.context_token_budget
    summaries = store_records.summaries_by_project(store, project, limit=CONTEXT_SUMMARIES)

    if query:
        ranked = [
            ContextItem(
                id=r.id,
                title=r.title,
                content=r.content,
                type=r.type,
                project=r.project,
                created_at=r.created_at,
                created_at_epoch=r.created_at_epoch,
                score=r.score,
                tokens=0,
                is_knowledge=is_knowledge_type(r.type),
            )
            for r in hybrid_search(store, query, project=project, limit=CONTEXT_CANDIDATES)
        ]
    else:
        ranked = _context_ranking(store, project)

    tokens_used = 0
    items: list[ContextItem] = []
    for item in ranked:
        item_tokens = estimate_tokens(item.title + item.content)
        if tokens_used + item_tokens > budget:
            break
        item.tokens = item_tokens
        tokens_used += item_tokens
        items.append(item)

    return SmartContext(
        project=project,
        items=items,
        summaries=summaries,
        token_budget=budget,
        tokens_used=tokens_used,
    )
