from __future__ import annotations

import datetime as dt
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

MAX_BATCH_IDS = 500


def iso_from_epoch_ms(epoch_ms: int) -> str:
    return dt.datetime.fromtimestamp(epoch_ms / 1000, tz=dt.UTC).isoformat()


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def clean_ids(ids: Iterable[Any], *, cap: int = MAX_BATCH_IDS) -> list[int]:
    """Positive integer ids only, in input order, without repeats, at most `cap`."""
    cleaned: list[int] = []
    seen: set[int] = set()
    for raw in ids:
        if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
            continue
        if raw in seen:
            continue
        seen.add(raw)
        cleaned.append(raw)
        if len(cleaned) >= cap:
            break
    return cleaned


def join_list(values: Iterable[str] | None) -> str | None:
    if not values:
        return None
    items = [value.strip() for value in values if value and value.strip()]
    return ", ".join(items) if items else None


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the block in one write transaction; joins an already open one."""
    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()
