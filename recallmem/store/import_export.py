"""Line-delimited JSON export and import.

An export is one `_meta` line followed by one object per record, each
tagged with `_type` (observation, summary or prompt). Import applies the
same content-hash identity as live ingestion and writes in fixed-size
batches, one transaction per batch.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any

from .errors import ValidationError
from .observations import content_hash, insert_observation
from .records import SUMMARY_FIELDS, validate_summary_input
from .types import ImportResult
from .utils import iso_from_epoch_ms, transaction

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

JSONL_SCHEMA_VERSION = "2.5.0"
EXPORT_BATCH_SIZE = 200
IMPORT_BATCH_SIZE = 100
MAX_PROJECT_CHARS = 200
MAX_TITLE_CHARS = 500
RECORD_TYPES = ("observation", "summary", "prompt")

_TEXT_FIELDS = {
    "observation": (
        "memory_session_id", "subtitle", "text", "narrative", "facts", "concepts",
        "files_read", "files_modified", "content_hash", "auto_category", "created_at",
    ),
    "summary": ("created_at",),
    "prompt": ("created_at",),
}
_INT_FIELDS = {
    "observation": ("prompt_number", "discovery_tokens", "created_at_epoch"),
    "summary": ("discovery_tokens", "created_at_epoch"),
    "prompt": ("prompt_number", "created_at_epoch"),
}

_OBSERVATION_COLUMNS = (
    "id, memory_session_id, project, type, title, subtitle, text, narrative, facts, concepts, "
    "files_read, files_modified, prompt_number, content_hash, discovery_tokens, auto_category, "
    "created_at, created_at_epoch"
)
_SUMMARY_COLUMNS = (
    "id, session_id, project, request, investigated, learned, completed, next_steps, notes, "
    "discovery_tokens, created_at, created_at_epoch"
)
_PROMPT_COLUMNS = (
    "id, content_session_id, project, prompt_number, prompt_text, created_at, created_at_epoch"
)
_TABLES = {
    "observation": ("observations", _OBSERVATION_COLUMNS),
    "summary": ("summaries", _SUMMARY_COLUMNS),
    "prompt": ("prompts", _PROMPT_COLUMNS),
}


def _conditions(
    project: str | None, since_epoch: int | None, until_epoch: int | None
) -> tuple[str, list[Any]]:
    where_clauses = ["1=1"]
    params: list[Any] = []
    if project:
        where_clauses.append("project = ?")
        params.append(project)
    if since_epoch is not None:
        where_clauses.append("created_at_epoch >= ?")
        params.append(since_epoch)
    if until_epoch is not None:
        where_clauses.append("created_at_epoch <= ?")
        params.append(until_epoch)
    return " AND ".join(where_clauses), params


def _iter_records(
    store: MemoryStore, record_type: str, where: str, params: list[Any]
) -> Iterator[dict[str, Any]]:
    table, columns = _TABLES[record_type]
    offset = 0
    while True:
        rows = store.conn.execute(
            f"""
            SELECT {columns} FROM {table}
            WHERE {where}
            ORDER BY created_at_epoch ASC, id ASC
            LIMIT ? OFFSET ?
            """,
            [*params, EXPORT_BATCH_SIZE, offset],
        ).fetchall()
        for row in rows:
            yield {"_type": record_type, **dict(row)}
        if len(rows) < EXPORT_BATCH_SIZE:
            return
        offset += len(rows)


def export_jsonl(
    store: MemoryStore,
    *,
    project: str | None = None,
    since_epoch: int | None = None,
    until_epoch: int | None = None,
) -> Iterator[str]:
    """Yield export lines (without newlines), metadata first."""
    where, params = _conditions(project, since_epoch, until_epoch)
    counts = {}
    for record_type in RECORD_TYPES:
        table, _ = _TABLES[record_type]
        row = store.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM {table} WHERE {where}", params
        ).fetchone()
        counts[table] = int(row["cnt"])
    filters = {
        key: value
        for key, value in {
            "project": project,
            "since_epoch": since_epoch,
            "until_epoch": until_epoch,
        }.items()
        if value is not None
    }
    meta = {
        "_meta": {
            "version": JSONL_SCHEMA_VERSION,
            "exported_at": dt.datetime.now(dt.UTC).isoformat(),
            "counts": counts,
            "filters": filters,
        }
    }
    yield json.dumps(meta, ensure_ascii=False)
    for record_type in RECORD_TYPES:
        for record in _iter_records(store, record_type, where, params):
            yield json.dumps(record, ensure_ascii=False)


def validate_record(raw: Any) -> str | None:
    """Reason a parsed line cannot be imported, or None when it is valid."""
    if not isinstance(raw, dict):
        return "record is not a JSON object"
    record_type = raw.get("_type")
    if record_type not in RECORD_TYPES:
        return f'"_type" is required, one of: {", ".join(RECORD_TYPES)}'
    project = raw.get("project")
    if not isinstance(project, str) or not project:
        return f'{record_type}: "project" is required'
    if len(project) > MAX_PROJECT_CHARS:
        return f'{record_type}: "project" too long (max {MAX_PROJECT_CHARS})'
    if record_type == "observation":
        for key in ("type", "title"):
            if not isinstance(raw.get(key), str) or not raw[key]:
                return f'observation: "{key}" is required'
        if len(raw["title"]) > MAX_TITLE_CHARS:
            return f'observation: "title" too long (max {MAX_TITLE_CHARS})'
    elif record_type == "summary":
        if not isinstance(raw.get("session_id"), str) or not raw["session_id"]:
            return 'summary: "session_id" is required'
        try:
            validate_summary_input({key: raw.get(key) for key in SUMMARY_FIELDS})
        except ValidationError as exc:
            return f"summary: {exc}"
    else:
        if not isinstance(raw.get("content_session_id"), str) or not raw["content_session_id"]:
            return 'prompt: "content_session_id" is required'
        if not isinstance(raw.get("prompt_text"), str) or not raw["prompt_text"]:
            return 'prompt: "prompt_text" is required'
    return _check_field_types(record_type, raw)


def _check_field_types(record_type: str, raw: dict[str, Any]) -> str | None:
    for key in _TEXT_FIELDS[record_type]:
        value = raw.get(key)
        if value is not None and not isinstance(value, str):
            return f'{record_type}: "{key}" must be a string'
    for key in _INT_FIELDS[record_type]:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            return f'{record_type}: "{key}" must be an integer'
        if value < 0:
            return f'{record_type}: "{key}" must not be negative'
    return None


def _import_observation(store: MemoryStore, rec: dict[str, Any], dry_run: bool) -> bool:
    digest = rec.get("content_hash") or content_hash(
        rec["project"], rec["type"], rec["title"], rec.get("narrative")
    )
    exists = store.conn.execute(
        "SELECT 1 FROM observations WHERE content_hash = ? LIMIT 1", (digest,)
    ).fetchone()
    if exists is not None:
        return False
    if dry_run:
        return True
    insert_observation(
        store,
        session_id=rec.get("memory_session_id") or "imported",
        project=rec["project"],
        obs_type=rec["type"],
        title=rec["title"],
        subtitle=rec.get("subtitle"),
        text=rec.get("text"),
        narrative=rec.get("narrative"),
        facts=rec.get("facts"),
        concepts=rec.get("concepts"),
        files_read=rec.get("files_read"),
        files_modified=rec.get("files_modified"),
        prompt_number=int(rec.get("prompt_number") or 0),
        digest=digest,
        discovery_tokens=int(rec.get("discovery_tokens") or 0),
        created_at_epoch=int(rec.get("created_at_epoch") or store.now_ms()),
        auto_category=rec.get("auto_category"),
    )
    return True


def _import_summary(store: MemoryStore, rec: dict[str, Any], dry_run: bool) -> bool:
    epoch = int(rec.get("created_at_epoch") or 0)
    exists = store.conn.execute(
        """
        SELECT 1 FROM summaries
        WHERE session_id = ? AND project = ? AND created_at_epoch = ?
        LIMIT 1
        """,
        (rec["session_id"], rec["project"], epoch),
    ).fetchone()
    if exists is not None:
        return False
    if dry_run:
        return True
    epoch = epoch or store.now_ms()
    store.conn.execute(
        """
        INSERT INTO summaries(
            session_id, project, request, investigated, learned, completed, next_steps, notes,
            discovery_tokens, created_at, created_at_epoch
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            rec["session_id"],
            rec["project"],
            *(rec.get(key) for key in SUMMARY_FIELDS),
            int(rec.get("discovery_tokens") or 0),
            rec.get("created_at") or iso_from_epoch_ms(epoch),
            epoch,
        ),
    )
    return True


def _import_prompt(store: MemoryStore, rec: dict[str, Any], dry_run: bool) -> bool:
    prompt_number = int(rec.get("prompt_number") or 0)
    exists = store.conn.execute(
        "SELECT 1 FROM prompts WHERE content_session_id = ? AND prompt_number = ? LIMIT 1",
        (rec["content_session_id"], prompt_number),
    ).fetchone()
    if exists is not None:
        return False
    if dry_run:
        return True
    epoch = int(rec.get("created_at_epoch") or store.now_ms())
    store.conn.execute(
        """
        INSERT INTO prompts(
            content_session_id, project, prompt_number, prompt_text, created_at, created_at_epoch
        )
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            rec["content_session_id"],
            rec["project"],
            prompt_number,
            rec["prompt_text"],
            rec.get("created_at") or iso_from_epoch_ms(epoch),
            epoch,
        ),
    )
    return True


_IMPORTERS = {
    "observation": _import_observation,
    "summary": _import_summary,
    "prompt": _import_prompt,
}


def _flush(
    store: MemoryStore, batch: list[dict[str, Any]], dry_run: bool, result: ImportResult
) -> None:
    if not batch:
        return
    if dry_run:
        for rec in batch:
            imported = _IMPORTERS[rec["_type"]](store, rec, True)
            result["imported" if imported else "skipped"] += 1
        return
    imported = 0
    skipped = 0
    with transaction(store.conn):
        for rec in batch:
            if _IMPORTERS[rec["_type"]](store, rec, False):
                imported += 1
            else:
                skipped += 1
    result["imported"] += imported
    result["skipped"] += skipped


def import_jsonl(
    store: MemoryStore, lines: Iterable[str], *, dry_run: bool = False
) -> ImportResult:
    """Import export lines, skipping records that are already present.

    Blank lines, `#` comments and the `_meta` line are ignored. Invalid lines
    are reported in `error_details` with their 1-based line number and do
    not stop the import. Records are written in batches of
    IMPORT_BATCH_SIZE, each batch atomically.
    """
    result: ImportResult = {
        "imported": 0,
        "skipped": 0,
        "errors": 0,
        "total": 0,
        "error_details": [],
    }
    batch: list[dict[str, Any]] = []
    for line_number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError as exc:
            result["total"] += 1
            result["errors"] += 1
            result["error_details"].append({"line": line_number, "error": f"invalid JSON: {exc}"})
            continue
        if isinstance(parsed, dict) and "_meta" in parsed:
            continue
        result["total"] += 1
        error = validate_record(parsed)
        if error:
            result["errors"] += 1
            result["error_details"].append({"line": line_number, "error": error})
            continue
        batch.append(parsed)
        if len(batch) >= IMPORT_BATCH_SIZE:
            _flush(store, batch, dry_run, result)
            batch = []
    _flush(store, batch, dry_run, result)
    if not dry_run and result["imported"]:
        logger.info(
            "imported %d records (%d skipped, %d errors)",
            result["imported"],
            result["skipped"],
            result["errors"],
        )
    return result
