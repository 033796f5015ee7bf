from __future__ import annotations

import struct
from pathlib import Path

import pytest

from recallmem.store import MemoryStore
from recallmem.store.vectors import (
    cosine_similarity,
    decode_vector,
    embedding_text,
    encode_vector,
)


def test_vectors_are_little_endian_float32() -> None:
    blob = encode_vector([1.0, -2.5, 0.125])
    assert len(blob) == 12
    assert blob[:4] == struct.pack("<f", 1.0)
    assert decode_vector(blob) == [1.0, -2.5, 0.125]
    assert decode_vector(b"") == []
    with pytest.raises(ValueError):
        decode_vector(b"\x00\x00\x00")


def test_cosine_similarity_edge_cases() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0


def test_embedding_text_joins_and_truncates() -> None:
    row = {"title": "T", "text": None, "narrative": "N", "concepts": "c" * 3000}
    text = embedding_text(row)
    assert text.startswith("T N c")
    assert len(text) == 2000


def test_store_embedding_is_an_upsert(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    try:
        obs_id = store.store_observation(project="p", obs_type="discovery", title="Vec")
        store.store_embedding(obs_id, [1.0, 0.0], "m1")
        store.store_embedding(obs_id, [0.0, 1.0, 0.0], "m2")
        rows = store.conn.execute(
            "SELECT embedding, model, dimensions FROM observation_embeddings"
        ).fetchall()
        assert len(rows) == 1
        assert decode_vector(rows[0]["embedding"]) == [0.0, 1.0, 0.0]
        assert (rows[0]["model"], rows[0]["dimensions"]) == ("m2", 3)
    finally:
        store.close()


def test_background_embedding_after_ingest(tmp_path: Path, fake_provider) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite", provider=fake_provider)
    try:
        obs_id = store.store_observation(
            project="p", obs_type="discovery", title="Auth login handler"
        )
        store.drain_embeddings(timeout=10)
        row = store.conn.execute(
            "SELECT embedding, model FROM observation_embeddings WHERE observation_id = ?",
            (obs_id,),
        ).fetchone()
        assert row is not None
        assert row["model"] == fake_provider.model
        assert decode_vector(row["embedding"])[:2] == [1.0, 1.0]
        assert store.embedding_stats("p") == {"total": 1, "embedded": 1, "percentage": 100}
    finally:
        store.close()


def test_vector_search_threshold_project_and_limit(
    tmp_path: Path, fake_provider, clock
) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite", provider=fake_provider, clock=clock)
    try:
        auth_id = store.store_observation(project="p", obs_type="discovery", title="Auth flow")
        clock.advance(1)
        both_id = store.store_observation(
            project="p", obs_type="discovery", title="Auth login session"
        )
        clock.advance(1)
        store.store_observation(project="p", obs_type="discovery", title="Database cache")
        clock.advance(1)
        store.store_observation(project="q", obs_type="discovery", title="Auth elsewhere")
        store.drain_embeddings(timeout=10)

        query = fake_provider.embed("auth")
        hits = store.vector_search(query, project="p")
        assert [hit.observation_id for hit in hits] == [auth_id, both_id]
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].similarity == pytest.approx(1 / 3**0.5)
        assert len(store.vector_search(query)) == 3
        assert len(store.vector_search(query, project="p", limit=1)) == 1
        assert store.vector_search(query, project="p", threshold=0.9)[0].observation_id == auth_id
        # Only the newest candidate (the database row) is scored.
        assert store.vector_search(query, project="p", max_candidates=1) == []
        assert store.vector_search([]) == []
    finally:
        store.close()


def test_in_process_scoring_matches_sqlite_vec(tmp_path: Path, fake_provider) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite", provider=fake_provider)
    try:
        store.store_observation(project="p", obs_type="discovery", title="Auth login")
        store.store_observation(project="p", obs_type="discovery", title="Login test")
        store.drain_embeddings(timeout=10)
        query = fake_provider.embed("login")
        first = [(h.observation_id, round(h.similarity, 5)) for h in store.vector_search(query)]
        store.vec_enabled = not store.vec_enabled
        second = [(h.observation_id, round(h.similarity, 5)) for h in store.vector_search(query)]
        assert first == second
    finally:
        store.close()


def test_backfill_embeds_missing_rows(tmp_path: Path, fake_provider) -> None:
    fake_provider.available = False
    store = MemoryStore(tmp_path / "mem.sqlite", provider=fake_provider)
    try:
        for title in ("Auth one", "Cache two", "Deploy three"):
            store.store_observation(project="p", obs_type="discovery", title=title)
        store.store_observation(project="q", obs_type="discovery", title="Other project")
        store.drain_embeddings(timeout=10)
        assert store.embedding_stats()["embedded"] == 0
        assert store.backfill_vectors() == {"checked": 0, "embedded": 0, "skipped": 0}

        fake_provider.available = True
        assert store.backfill_vectors(2, project="p", dry_run=True)["embedded"] == 2
        assert store.embedding_stats()["embedded"] == 0
        assert store.backfill_vectors(2, project="p") == {"checked": 2, "embedded": 2, "skipped": 0}
        assert store.backfill_vectors(10, project="p")["embedded"] == 1
        assert store.embedding_stats("p")["percentage"] == 100
        assert store.embedding_stats() == {"total": 4, "embedded": 3, "percentage": 75}
    finally:
        store.close()


def test_backfill_counts_unembeddable_rows_as_skipped(
    tmp_path: Path, fake_provider, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite", provider=None)
    try:
        store.store_observation(project="p", obs_type="discovery", title="First")
        store.store_observation(project="p", obs_type="discovery", title="Second")
        store.provider = fake_provider
        monkeypatch.setattr(fake_provider, "embed_batch", lambda texts: [None, [1.0, 0.0]])
        assert store.backfill_vectors() == {"checked": 2, "embedded": 1, "skipped": 1}
    finally:
        store.close()
