from __future__ import annotations

from pathlib import Path

import pytest

VOCABULARY = ("auth", "login", "session", "database", "cache", "index", "deploy", "test")


class FakeEmbeddingProvider:
    """Bag-of-words vectors over a tiny vocabulary plus one catch-all dimension."""

    name = "fake"
    model = "fake-bow"

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.calls: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def dimensions(self) -> int:
        return len(VOCABULARY) + 1

    def embed(self, text: str) -> list[float] | None:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float] | None]:
        self.calls.extend(texts)
        if not self.available:
            return [None] * len(texts)
        vectors: list[list[float] | None] = []
        for text in texts:
            lowered = text.lower()
            counts = [float(lowered.count(word)) for word in VOCABULARY]
            counts.append(0.0 if any(counts) else 1.0)
            vectors.append(counts)
        return vectors


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RECALLMEM_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("RECALLMEM_EMBEDDING_DISABLED", "1")
    for name in ("RECALLMEM_DB", "RECALLMEM_PROJECT", "RECALLMEM_CONTEXT_TOKENS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
