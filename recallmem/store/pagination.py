from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from ..db import rows_to_dicts
from .errors import InvalidCursorError
from .types import Page

if TYPE_CHECKING:
    from ._store import MemoryStore

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 200

_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]+={0,2}")
_INT_RE = re.compile(r"[1-9][0-9]*")

# Tables that support keyset listing, with their default page sizes.
PAGED_TABLES = {"observations": 50, "summaries": 20, "prompts": 50}


def encode_cursor(epoch: int, row_id: int) -> str:
    raw = f"{epoch}:{row_id}".encode()
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> tuple[int, int] | None:
    """Inverse of encode_cursor; None for anything it could not have produced."""
    if not cursor or not isinstance(cursor, str) or not _TOKEN_RE.fullmatch(cursor):
        return None
    token = cursor.rstrip("=")
    try:
        decoded = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    epoch_text, sep, id_text = decoded.partition(":")
    if not sep or not _INT_RE.fullmatch(epoch_text) or not _INT_RE.fullmatch(id_text):
        return None
    epoch = int(epoch_text)
    row_id = int(id_text)
    if epoch <= 0 or row_id <= 0:
        return None
    return epoch, row_id


def build_next_cursor(rows: Sequence[Mapping[str, Any]], limit: int) -> str | None:
    """Cursor after the last row of a full page; None when the page is the last one."""
    if len(rows) < limit or not rows:
        return None
    last = rows[-1]
    return encode_cursor(int(last["created_at_epoch"]), int(last["id"]))


def clamp_page_size(limit: int | None, default: int) -> int:
    if limit is None:
        return default
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, int(limit)))


def list_page(
    store: MemoryStore,
    table: str,
    *,
    project: str | None = None,
    cursor: str | None = None,
    limit: int | None = None,
) -> Page:
    """One reverse-chronological page of `table`, keyed on (created_at_epoch, id).

    Raises InvalidCursorError for a cursor that does not decode.
    """
    if table not in PAGED_TABLES:
        raise ValueError(f"unsupported table: {table}")
    default_size = store.config.page_size if table == "observations" else PAGED_TABLES[table]
    page_size = clamp_page_size(limit, default_size)
    where_clauses: list[str] = []
    params: list[Any] = []
    if cursor is not None:
        position = decode_cursor(cursor)
        if position is None:
            raise InvalidCursorError(f"invalid cursor: {cursor!r}")
        epoch, row_id = position
        where_clauses.append("(created_at_epoch < ? OR (created_at_epoch = ? AND id < ?))")
        params.extend([epoch, epoch, row_id])
    if project:
        where_clauses.append("project = ?")
        params.append(project)
    where = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
    rows = store.conn.execute(
        f"""
        SELECT * FROM {table}
        {where}
        ORDER BY created_at_epoch DESC, id DESC
        LIMIT ?
        """,
        [*params, page_size],
    ).fetchall()
    items = rows_to_dicts(rows)
    return Page(items=items, next_cursor=build_next_cursor(items, page_size))
