from __future__ import annotations

from pathlib import Path

from recallmem.store import MemoryStore
from recallmem.store.lexical import like_search, sanitize_fts_query


def test_sanitize_fts_query_quotes_terms() -> None:
    assert sanitize_fts_query('login "flow" OR x*') == '"login" "flow" "OR" "x*"'
    assert sanitize_fts_query('  "" ') == ""
    assert sanitize_fts_query(" ".join(["t"] * 150)).count('"t"') == 100


def test_title_matches_outrank_body_matches(tmp_path: Path, clock) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite", clock=clock)
    try:
        body_id = store.store_observation(
            project="p",
            obs_type="discovery",
            title="Unrelated heading",
            content="mentions caching once among many other words in a long body",
        )
        title_id = store.store_observation(
            project="p", obs_type="discovery", title="Caching layer", content="details"
        )
        results = store.search("caching")
        assert [obs.id for obs in results] == [title_id, body_id]
        ranked = store.hybrid_search("caching", project="p")
        assert ranked[0].id == title_id
    finally:
        store.close()


def test_search_filters(tmp_path: Path, clock) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite", clock=clock)
    try:
        a = store.store_observation(project="a", obs_type="discovery", title="Shared term")
        clock.advance(1_000)
        b = store.store_observation(project="b", obs_type="bugfix", title="Shared term")
        assert [obs.id for obs in store.search("shared", project="a")] == [a]
        assert [obs.id for obs in store.search("shared", obs_type="bugfix")] == [b]
        assert [obs.id for obs in store.search("shared", date_start=clock.now)] == [b]
        assert [obs.id for obs in store.search("shared", date_end=clock.now - 1)] == [a]
    finally:
        store.close()


def test_punctuation_only_query_falls_back_to_substring(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    try:
        obs_id = store.store_observation(
            project="p", obs_type="discovery", title="Quota at 100% usage"
        )
        store.store_observation(project="p", obs_type="discovery", title="Quota at 100 usage")
        # A lone quote has no usable terms, so the LIKE path runs.
        assert store.search('"') == []
        assert len(store.search("quota")) == 2
        # LIKE wildcards in the query are matched literally.
        assert [obs.id for obs in like_search(store, "100%")] == [obs_id]
    finally:
        store.close()
