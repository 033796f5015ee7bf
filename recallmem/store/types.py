from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Literal, TypedDict

SearchSource = Literal["vector", "keyword", "hybrid"]


@dataclass
class Observation:
    id: int
    memory_session_id: str
    project: str
    type: str
    title: str
    subtitle: str | None
    text: str | None
    narrative: str | None
    facts: str | None
    concepts: str | None
    files_read: str | None
    files_modified: str | None
    prompt_number: int
    created_at: str
    created_at_epoch: int
    content_hash: str | None = None
    discovery_tokens: int = 0
    last_accessed_epoch: int | None = None
    is_stale: bool = False
    auto_category: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Observation:
        keys = set(row.keys())
        return cls(
            id=int(row["id"]),
            memory_session_id=row["memory_session_id"],
            project=row["project"],
            type=row["type"],
            title=row["title"],
            subtitle=row["subtitle"],
            text=row["text"],
            narrative=row["narrative"],
            facts=row["facts"],
            concepts=row["concepts"],
            files_read=row["files_read"],
            files_modified=row["files_modified"],
            prompt_number=int(row["prompt_number"] or 0),
            created_at=row["created_at"],
            created_at_epoch=int(row["created_at_epoch"]),
            content_hash=row["content_hash"] if "content_hash" in keys else None,
            discovery_tokens=int(row["discovery_tokens"] or 0) if "discovery_tokens" in keys else 0,
            last_accessed_epoch=row["last_accessed_epoch"] if "last_accessed_epoch" in keys else None,
            is_stale=bool(row["is_stale"]) if "is_stale" in keys else False,
            auto_category=row["auto_category"] if "auto_category" in keys else None,
        )

    @property
    def files_modified_list(self) -> list[str]:
        return split_files(self.files_modified)


@dataclass
class LexicalHit:
    observation: Observation
    rank: float


@dataclass
class VectorHit:
    observation_id: int
    similarity: float
    title: str
    text: str | None
    type: str
    project: str
    created_at: str
    created_at_epoch: int
    is_stale: bool = False


@dataclass
class SearchResult:
    id: int
    title: str
    content: str
    type: str
    project: str
    created_at: str
    created_at_epoch: int
    score: float
    source: SearchSource
    signals: dict[str, float] = field(default_factory=dict)


@dataclass
class ContextItem:
    id: int
    title: str
    content: str
    type: str
    project: str
    created_at: str
    created_at_epoch: int
    score: float
    tokens: int
    is_knowledge: bool


@dataclass
class SmartContext:
    project: str
    items: list[ContextItem]
    summaries: list[dict[str, Any]]
    token_budget: int
    tokens_used: int


@dataclass
class Page:
    items: list[dict[str, Any]]
    next_cursor: str | None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


class ConsolidationResult(TypedDict):
    merged: int
    removed: int


class ImportErrorDetail(TypedDict):
    line: int
    error: str


class ImportResult(TypedDict):
    imported: int
    skipped: int
    errors: int
    total: int
    error_details: list[ImportErrorDetail]


def split_files(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
