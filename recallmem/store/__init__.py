from __future__ import annotations

from ._store import MemoryStore
from .errors import InvalidCursorError, ValidationError
from .observations import DUPLICATE_ID, content_hash
from .pagination import decode_cursor, encode_cursor
from .types import (
    ContextItem,
    ImportResult,
    Observation,
    Page,
    SearchResult,
    SmartContext,
    VectorHit,
)

__all__ = [
    "DUPLICATE_ID",
    "ContextItem",
    "ImportResult",
    "InvalidCursorError",
    "MemoryStore",
    "Observation",
    "Page",
    "SearchResult",
    "SmartContext",
    "ValidationError",
    "VectorHit",
    "content_hash",
    "decode_cursor",
    "encode_cursor",
]
