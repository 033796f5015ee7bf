from __future__ import annotations

import sqlite3
from pathlib import Path

from recallmem import db
from recallmem.store import MemoryStore


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def test_migrate_applies_every_version_once(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "mem.sqlite", load_vec=False)
    try:
        applied = db.migrate(conn)
        assert applied == [version for version, _ in db.MIGRATIONS]
        assert db.schema_version(conn) == db.MIGRATIONS[-1][0]
        assert db.migrate(conn) == []
    finally:
        conn.close()


def test_schema_has_expected_tables_and_columns(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "mem.sqlite", load_vec=False)
    try:
        db.migrate(conn)
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        for table in (
            "sessions",
            "observations",
            "summaries",
            "prompts",
            "observations_fts",
            "observation_embeddings",
            "checkpoints",
            "schema_versions",
        ):
            assert table in tables
        columns = _columns(conn, "observations")
        for column in (
            "last_accessed_epoch",
            "is_stale",
            "content_hash",
            "discovery_tokens",
            "auto_category",
        ):
            assert column in columns
        assert "discovery_tokens" in _columns(conn, "summaries")
    finally:
        conn.close()


def test_connect_sets_pragmas(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "nested" / "mem.sqlite", load_vec=False)
    try:
        assert (tmp_path / "nested").is_dir()
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
    finally:
        conn.close()


def test_reopening_store_keeps_data(tmp_path: Path) -> None:
    path = tmp_path / "mem.sqlite"
    store = MemoryStore(path)
    obs_id = store.store_observation(project="p", obs_type="discovery", title="Persisted")
    store.close()

    reopened = MemoryStore(path)
    try:
        obs = reopened.get_observation(obs_id)
        assert obs is not None
        assert obs.title == "Persisted"
        assert db.schema_version(reopened.conn) == db.MIGRATIONS[-1][0]
    finally:
        reopened.close()


def test_fts_index_follows_inserts_updates_and_deletes(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    try:
        obs_id = store.store_observation(
            project="p", obs_type="discovery", title="Original heading", content="body"
        )

        def matches(term: str) -> list[int]:
            rows = store.conn.execute(
                "SELECT rowid FROM observations_fts WHERE observations_fts MATCH ?", (term,)
            ).fetchall()
            return [int(row[0]) for row in rows]

        assert matches("original") == [obs_id]
        store.conn.execute("UPDATE observations SET title = 'Renamed heading' WHERE id = ?", (obs_id,))
        store.conn.commit()
        assert matches("original") == []
        assert matches("renamed") == [obs_id]
        assert store.delete_observation(obs_id) is True
        assert matches("renamed") == []
    finally:
        store.close()


def test_embeddings_cascade_with_observation(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    try:
        obs_id = store.store_observation(project="p", obs_type="discovery", title="Vector owner")
        store.store_embedding(obs_id, [0.1, 0.2, 0.3], "fake")
        assert store.embedding_stats()["embedded"] == 1
        store.delete_observation(obs_id)
        row = store.conn.execute("SELECT COUNT(*) FROM observation_embeddings").fetchone()
        assert row[0] == 0
    finally:
        store.close()

