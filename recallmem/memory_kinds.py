from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Final

KNOWLEDGE_TYPES: Final[tuple[str, ...]] = (
    "constraint",
    "decision",
    "heuristic",
    "rejected",
)

# Types whose `files` argument lands in files_read / files_modified.
READ_TYPES: Final[frozenset[str]] = frozenset({"file-read"})
WRITE_TYPES: Final[frozenset[str]] = frozenset({"file-write"})

DEFAULT_DEDUP_WINDOW_MS: Final[int] = 30_000
DEDUP_WINDOWS_MS: Final[dict[str, int]] = {
    "file-read": 60_000,
    "file-write": 10_000,
    "command": 30_000,
    "research": 120_000,
    "delegation": 60_000,
}

CONSTRAINT_SEVERITIES: Final[tuple[str, ...]] = ("hard", "soft")


def normalize_memory_kind(kind: str) -> str:
    return (kind or "").strip().lower()


def is_knowledge_type(kind: str | None) -> bool:
    return normalize_memory_kind(kind or "") in KNOWLEDGE_TYPES


def dedup_window_ms(kind: str) -> int | None:
    """Dedup lookback for a type; None means any earlier match blocks the insert."""
    normalized = normalize_memory_kind(kind)
    if normalized in KNOWLEDGE_TYPES:
        return None
    return DEDUP_WINDOWS_MS.get(normalized, DEFAULT_DEDUP_WINDOW_MS)


def validate_knowledge_type(kind: str) -> str:
    normalized = normalize_memory_kind(kind)
    if normalized in KNOWLEDGE_TYPES:
        return normalized
    raise ValueError(
        f"Invalid knowledge type '{normalized}'. Allowed types: {', '.join(KNOWLEDGE_TYPES)}"
    )


@dataclass
class ConstraintMeta:
    severity: str = "soft"
    reason: str | None = None


@dataclass
class DecisionMeta:
    alternatives: list[str] = field(default_factory=list)
    reason: str | None = None


@dataclass
class HeuristicMeta:
    context: str | None = None
    confidence: str | None = None


@dataclass
class RejectedMeta:
    reason: str = ""
    alternatives: list[str] = field(default_factory=list)


KnowledgeMeta = ConstraintMeta | DecisionMeta | HeuristicMeta | RejectedMeta

_META_CLASSES: Final[dict[str, type]] = {
    "constraint": ConstraintMeta,
    "decision": DecisionMeta,
    "heuristic": HeuristicMeta,
    "rejected": RejectedMeta,
}


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    raise ValueError(f"expected a list of strings, got {type(value).__name__}")


def build_knowledge_meta(kind: str, data: dict[str, Any] | None = None) -> KnowledgeMeta:
    """Build the metadata variant for a knowledge type from loose caller input."""
    normalized = validate_knowledge_type(kind)
    data = dict(data or {})
    if normalized == "constraint":
        severity = str(data.get("severity") or "soft").lower()
        if severity not in CONSTRAINT_SEVERITIES:
            raise ValueError(
                f"Invalid constraint severity '{severity}'. "
                f"Allowed: {', '.join(CONSTRAINT_SEVERITIES)}"
            )
        return ConstraintMeta(severity=severity, reason=data.get("reason"))
    if normalized == "decision":
        return DecisionMeta(
            alternatives=_str_list(data.get("alternatives")), reason=data.get("reason")
        )
    if normalized == "heuristic":
        confidence = data.get("confidence")
        return HeuristicMeta(
            context=data.get("context"),
            confidence=None if confidence is None else str(confidence),
        )
    return RejectedMeta(
        reason=str(data.get("reason") or ""), alternatives=_str_list(data.get("alternatives"))
    )


def dump_knowledge_meta(kind: str, meta: KnowledgeMeta) -> str:
    normalized = validate_knowledge_type(kind)
    expected = _META_CLASSES[normalized]
    if not isinstance(meta, expected):
        raise ValueError(
            f"metadata for '{normalized}' must be {expected.__name__}, got {type(meta).__name__}"
        )
    payload = {"knowledge_type": normalized, **asdict(meta)}
    return json.dumps(payload, ensure_ascii=False)


def load_knowledge_meta(facts: str | None) -> KnowledgeMeta | None:
    """Decode a facts column written by dump_knowledge_meta.

    Reads the discriminant first; anything that is not knowledge metadata
    (plain facts, invalid JSON) yields None.
    """
    if not facts:
        return None
    try:
        data = json.loads(facts)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    kind = data.pop("knowledge_type", None)
    cls = _META_CLASSES.get(str(kind)) if kind is not None else None
    if cls is None:
        return None
    known = {key: value for key, value in data.items() if key in cls.__dataclass_fields__}
    return cls(**known)
