"""Composite ranking for retrieved observations.

Every function here is pure: callers pass timestamps and "now" explicitly
when they need reproducible results.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Final

from .memory_kinds import normalize_memory_kind

RECENCY_HALF_LIFE_HOURS: Final[float] = 168.0
ACCESS_HALF_LIFE_HOURS: Final[float] = 48.0
HYBRID_BONUS: Final[float] = 1.15
STALE_PENALTY: Final[float] = 0.5

KNOWLEDGE_TYPE_BOOST: Final[dict[str, float]] = {
    "constraint": 1.30,
    "decision": 1.25,
    "heuristic": 1.15,
    "rejected": 1.10,
}

_MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class ScoringWeights:
    semantic: float
    lexical: float
    recency: float
    project_match: float


SEARCH_WEIGHTS: Final[ScoringWeights] = ScoringWeights(
    semantic=0.4, lexical=0.3, recency=0.2, project_match=0.1
)
CONTEXT_WEIGHTS: Final[ScoringWeights] = ScoringWeights(
    semantic=0.0, lexical=0.0, recency=0.7, project_match=0.3
)


@dataclass(frozen=True)
class ScoringSignals:
    semantic: float = 0.0
    lexical: float = 0.0
    recency: float = 0.0
    project_match: float = 0.0


def now_ms() -> int:
    return int(time.time() * 1000)


def _decay(epoch_ms: int | float | None, half_life_hours: float, now: int | None) -> float:
    if epoch_ms is None or not math.isfinite(epoch_ms) or epoch_ms <= 0:
        return 0.0
    current = now_ms() if now is None else now
    age_hours = (current - epoch_ms) / _MS_PER_HOUR
    if age_hours <= 0:
        return 1.0
    return math.exp(-age_hours * math.log(2) / half_life_hours)


def recency_score(
    created_at_epoch: int | float | None,
    half_life_hours: float = RECENCY_HALF_LIFE_HOURS,
    *,
    now: int | None = None,
) -> float:
    """Exponential decay in (0, 1]; 0 for a missing epoch, 1 for zero or future age."""
    return _decay(created_at_epoch, half_life_hours, now)


def access_recency_score(
    last_accessed_epoch: int | float | None,
    half_life_hours: float = ACCESS_HALF_LIFE_HOURS,
    *,
    now: int | None = None,
) -> float:
    """Decay of the last-access time (48h half-life). Not part of the retrieval score."""
    return _decay(last_accessed_epoch, half_life_hours, now)


def normalize_fts_rank(rank: float, all_ranks: list[float]) -> float:
    """Min-max normalise an FTS5 bm25 rank into [0, 1].

    bm25() is negative and more negative means more relevant, so the lowest
    rank in the set maps to 1.
    """
    if not all_ranks:
        return 0.0
    low = min(all_ranks)
    high = max(all_ranks)
    if len(all_ranks) == 1 or high == low:
        return 1.0
    return (high - rank) / (high - low)


def project_match_score(item_project: str | None, target_project: str | None) -> float:
    if not item_project or not target_project:
        return 0.0
    return 1.0 if item_project.lower() == target_project.lower() else 0.0


def composite_score(signals: ScoringSignals, weights: ScoringWeights) -> float:
    return (
        signals.semantic * weights.semantic
        + signals.lexical * weights.lexical
        + signals.recency * weights.recency
        + signals.project_match * weights.project_match
    )


def knowledge_type_boost(kind: str | None) -> float:
    return KNOWLEDGE_TYPE_BOOST.get(normalize_memory_kind(kind or ""), 1.0)


def staleness_penalty(is_stale: bool | int | None) -> float:
    return STALE_PENALTY if is_stale else 1.0


def final_score(
    signals: ScoringSignals,
    weights: ScoringWeights,
    *,
    kind: str | None,
    hybrid: bool = False,
    stale: bool = False,
) -> float:
    """Composite score with the hybrid bonus, knowledge boost and stale penalty, clamped to 1.0."""
    score = composite_score(signals, weights)
    if hybrid:
        score *= HYBRID_BONUS
    score *= knowledge_type_boost(kind)
    score *= staleness_penalty(stale)
    return min(1.0, score)


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / 4)
