from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import sqlite_vec

logger = logging.getLogger(__name__)


def sqlite_vec_version(conn: sqlite3.Connection) -> str | None:
    try:
        row = conn.execute("select vec_version()").fetchone()
    except sqlite3.Error:
        return None
    if not row or row[0] is None:
        return None
    return str(row[0])


def _load_sqlite_vec(conn: sqlite3.Connection) -> None:
    try:
        conn.enable_load_extension(True)
    except AttributeError as exc:
        raise RuntimeError(
            "sqlite-vec requires a Python SQLite build that supports extension loading."
        ) from exc
    try:
        sqlite_vec.load(conn)
        if sqlite_vec_version(conn) is None:
            raise RuntimeError("sqlite-vec loaded but version check failed")
    except sqlite3.Error as exc:
        raise RuntimeError(
            "Failed to load sqlite-vec extension. Vector search falls back to in-process cosine."
        ) from exc
    finally:
        try:
            conn.enable_load_extension(False)
        except AttributeError:
            pass


def connect(
    db_path: Path | str, check_same_thread: bool = True, *, load_vec: bool = True
) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA temp_store = MEMORY")
    if load_vec:
        try:
            _load_sqlite_vec(conn)
        except RuntimeError as exc:
            logger.warning("sqlite-vec unavailable", exc_info=exc)
    return conn


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row["name"] == column for row in rows)


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    if _column_exists(conn, table, column):
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def _migration_1_core_tables(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            content_session_id TEXT NOT NULL UNIQUE,
            project TEXT NOT NULL,
            user_prompt TEXT,
            memory_session_id TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            started_at TEXT NOT NULL,
            started_at_epoch INTEGER NOT NULL,
            completed_at TEXT,
            completed_at_epoch INTEGER
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS observations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            memory_session_id TEXT NOT NULL,
            project TEXT NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            subtitle TEXT,
            text TEXT,
            narrative TEXT,
            facts TEXT,
            concepts TEXT,
            files_read TEXT,
            files_modified TEXT,
            prompt_number INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            created_at_epoch INTEGER NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS summaries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            project TEXT NOT NULL,
            request TEXT,
            investigated TEXT,
            learned TEXT,
            completed TEXT,
            next_steps TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            created_at_epoch INTEGER NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS prompts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            content_session_id TEXT NOT NULL,
            project TEXT NOT NULL,
            prompt_number INTEGER NOT NULL,
            prompt_text TEXT NOT NULL,
            created_at TEXT NOT NULL,
            created_at_epoch INTEGER NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_observations_project ON observations(project)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_observations_type ON observations(type)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_observations_epoch ON observations(created_at_epoch)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_summaries_project ON summaries(project)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prompts_session ON prompts(content_session_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project)")


def _migration_2_fts(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE VIRTUAL TABLE IF NOT EXISTS observations_fts USING fts5(
            title, text, narrative, concepts,
            content='observations',
            content_rowid='id'
        )
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS observations_ai AFTER INSERT ON observations BEGIN
            INSERT INTO observations_fts(rowid, title, text, narrative, concepts)
            VALUES (new.id, new.title, new.text, new.narrative, new.concepts);
        END
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS observations_ad AFTER DELETE ON observations BEGIN
            INSERT INTO observations_fts(observations_fts, rowid, title, text, narrative, concepts)
            VALUES ('delete', old.id, old.title, old.text, old.narrative, old.concepts);
        END
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS observations_au AFTER UPDATE ON observations BEGIN
            INSERT INTO observations_fts(observations_fts, rowid, title, text, narrative, concepts)
            VALUES ('delete', old.id, old.title, old.text, old.narrative, old.concepts);
            INSERT INTO observations_fts(rowid, title, text, narrative, concepts)
            VALUES (new.id, new.title, new.text, new.narrative, new.concepts);
        END
        """
    )
    conn.execute("INSERT INTO observations_fts(observations_fts) VALUES ('rebuild')")


def _migration_3_embeddings(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS observation_embeddings (
            observation_id INTEGER PRIMARY KEY
                REFERENCES observations(id) ON DELETE CASCADE,
            embedding BLOB NOT NULL,
            model TEXT NOT NULL,
            dimensions INTEGER NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )


def _migration_4_decay(conn: sqlite3.Connection) -> None:
    _ensure_column(conn, "observations", "last_accessed_epoch", "INTEGER")
    _ensure_column(conn, "observations", "is_stale", "INTEGER NOT NULL DEFAULT 0")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_observations_stale ON observations(is_stale)")


def _migration_5_checkpoints(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS checkpoints (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            project TEXT NOT NULL,
            task TEXT NOT NULL,
            progress TEXT,
            next_steps TEXT,
            open_questions TEXT,
            relevant_files TEXT,
            context_snapshot TEXT,
            created_at TEXT NOT NULL,
            created_at_epoch INTEGER NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_checkpoints_session ON checkpoints(session_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_checkpoints_project ON checkpoints(project)")


def _migration_6_content_hash(conn: sqlite3.Connection) -> None:
    _ensure_column(conn, "observations", "content_hash", "TEXT")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_observations_hash ON observations(content_hash, created_at_epoch)"
    )


def _migration_7_discovery_tokens(conn: sqlite3.Connection) -> None:
    _ensure_column(conn, "observations", "discovery_tokens", "INTEGER NOT NULL DEFAULT 0")
    _ensure_column(conn, "summaries", "discovery_tokens", "INTEGER NOT NULL DEFAULT 0")


def _migration_8_auto_category(conn: sqlite3.Connection) -> None:
    _ensure_column(conn, "observations", "auto_category", "TEXT")


def _migration_9_keyset_indexes(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_observations_project_epoch
        ON observations(project, created_at_epoch DESC, id DESC)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_summaries_project_epoch
        ON summaries(project, created_at_epoch DESC, id DESC)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_prompts_project_epoch
        ON prompts(project, created_at_epoch DESC, id DESC)
        """
    )


MIGRATIONS: list[tuple[int, Callable[[sqlite3.Connection], None]]] = [
    (1, _migration_1_core_tables),
    (2, _migration_2_fts),
    (3, _migration_3_embeddings),
    (4, _migration_4_decay),
    (5, _migration_5_checkpoints),
    (6, _migration_6_content_hash),
    (7, _migration_7_discovery_tokens),
    (8, _migration_8_auto_category),
    (9, _migration_9_keyset_indexes),
]


def schema_version(conn: sqlite3.Connection) -> int:
    try:
        row = conn.execute("SELECT MAX(version) AS version FROM schema_versions").fetchone()
    except sqlite3.OperationalError:
        return 0
    if row is None or row["version"] is None:
        return 0
    return int(row["version"])


def migrate(conn: sqlite3.Connection) -> list[int]:
    """Apply pending migrations in order, each in its own transaction.

    Returns the versions applied by this call; an up-to-date database yields [].
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_versions (
            id INTEGER PRIMARY KEY,
            version INTEGER NOT NULL UNIQUE,
            applied_at TEXT NOT NULL
        )
        """
    )
    conn.commit()
    current = schema_version(conn)
    applied: list[int] = []
    for version, step in MIGRATIONS:
        if version <= current:
            continue
        conn.execute("BEGIN")
        try:
            step(conn)
            conn.execute(
                "INSERT INTO schema_versions(version, applied_at) VALUES (?, ?)",
                (version, dt.datetime.now(dt.UTC).isoformat()),
            )
        except sqlite3.Error:
            conn.rollback()
            raise
        conn.commit()
        applied.append(version)
    if applied:
        logger.info("applied schema migrations %s", applied)
    return applied


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(row) for row in rows]
