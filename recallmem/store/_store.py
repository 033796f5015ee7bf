from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from contextlib import closing
from pathlib import Path
from typing import Any

from .. import db
from ..config import RecallMemConfig, load_config
from ..memory_kinds import KnowledgeMeta
from ..scoring import SEARCH_WEIGHTS, ScoringWeights, now_ms
from ..semantic import EmbeddingProvider, EmbeddingQueue
from . import import_export as store_import_export
from . import lexical as store_lexical
from . import maintenance as store_maintenance
from . import observations as store_observations
from . import pagination as store_pagination
from . import records as store_records
from . import retrieval as store_retrieval
from . import stats as store_stats
from . import vectors as store_vectors
from .types import (
    ConsolidationResult,
    ImportResult,
    Observation,
    Page,
    SearchResult,
    SmartContext,
    VectorHit,
)
from .utils import transaction

logger = logging.getLogger(__name__)

_DEFAULT_PROVIDER = object()


class MemoryStore:
    """Owns the database connection, the embedding provider and its worker.

    Pass `provider=None` for a keyword-only store. Without an explicit
    provider one is built from config, unless embeddings are disabled there.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        config: RecallMemConfig | None = None,
        provider: EmbeddingProvider | None | object = _DEFAULT_PROVIDER,
        clock: Callable[[], int] = now_ms,
        check_same_thread: bool = True,
    ):
        self.config = config or load_config()
        self.db_path = Path(db_path or self.config.db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.migrate(self.conn)
        self.vec_enabled = db.sqlite_vec_version(self.conn) is not None
        self.redact_secrets = bool(self.config.redact_secrets)
        self._clock = clock
        logger.debug("opened %s (sqlite-vec: %s)", self.db_path, self.vec_enabled)

        if provider is _DEFAULT_PROVIDER:
            provider = (
                None
                if self.config.embedding_disabled
                else EmbeddingProvider(
                    self.config.embedding_model,
                    dimensions=self.config.embedding_dimensions,
                )
            )
        self.provider: EmbeddingProvider | None = provider  # type: ignore[assignment]
        self._embedding_queue: EmbeddingQueue | None = (
            EmbeddingQueue(self._embed_in_background) if self.provider is not None else None
        )

    def now_ms(self) -> int:
        return self._clock()

    def close(self) -> None:
        if self._embedding_queue is not None:
            self._embedding_queue.shutdown()
            self._embedding_queue = None
        self.conn.close()

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Embeddings

    def schedule_embedding(self, observation_id: int) -> None:
        if self._embedding_queue is None or observation_id <= 0:
            return
        self._embedding_queue.submit(observation_id)

    def drain_embeddings(self, timeout: float | None = None) -> None:
        if self._embedding_queue is not None:
            self._embedding_queue.drain(timeout)

    def _embed_in_background(self, observation_id: int) -> None:
        if self.provider is None or not self.provider.is_available():
            return
        with closing(db.connect(self.db_path, check_same_thread=False, load_vec=False)) as conn:
            store_vectors.embed_observation(conn, self.provider, observation_id)

    def store_embedding(self, observation_id: int, vector: Sequence[float], model: str) -> None:
        with transaction(self.conn):
            store_vectors.store_embedding(self.conn, observation_id, vector, model)

    def backfill_vectors(
        self, batch_size: int = 50, *, project: str | None = None, dry_run: bool = False
    ) -> dict[str, int]:
        return store_vectors.backfill_vectors(
            self, batch_size, project=project, dry_run=dry_run
        )

    def embedding_stats(self, project: str | None = None) -> dict[str, Any]:
        return store_vectors.embedding_stats(self, project)

    def vector_search(
        self,
        query_vector: Sequence[float],
        *,
        project: str | None = None,
        limit: int = 10,
        threshold: float | None = None,
        max_candidates: int | None = None,
    ) -> list[VectorHit]:
        return store_vectors.search(
            self,
            query_vector,
            project=project,
            limit=limit,
            threshold=self.config.vector_threshold if threshold is None else threshold,
            max_candidates=max_candidates or self.config.vector_max_candidates,
        )

    # Ingestion

    def store_observation(
        self,
        *,
        project: str,
        obs_type: str,
        title: str,
        content: str | None = None,
        narrative: str | None = None,
        subtitle: str | None = None,
        concepts: Sequence[str] | None = None,
        files: Sequence[str] | None = None,
        files_read: Sequence[str] | None = None,
        files_modified: Sequence[str] | None = None,
        facts: str | None = None,
        session_id: str | None = None,
        prompt_number: int = 0,
    ) -> int:
        return store_observations.store_observation(
            self,
            project=project,
            obs_type=obs_type,
            title=title,
            content=content,
            narrative=narrative,
            subtitle=subtitle,
            concepts=concepts,
            files=files,
            files_read=files_read,
            files_modified=files_modified,
            facts=facts,
            session_id=session_id,
            prompt_number=prompt_number,
        )

    def store_knowledge(
        self,
        *,
        project: str,
        knowledge_type: str,
        title: str,
        content: str,
        metadata: KnowledgeMeta | dict[str, Any] | None = None,
        concepts: Sequence[str] | None = None,
        files: Sequence[str] | None = None,
        session_id: str | None = None,
    ) -> int:
        return store_observations.store_knowledge(
            self,
            project=project,
            knowledge_type=knowledge_type,
            title=title,
            content=content,
            metadata=metadata,
            concepts=concepts,
            files=files,
            session_id=session_id,
        )

    def get_observation(self, observation_id: int) -> Observation | None:
        return store_observations.get_observation(self, observation_id)

    def get_observations(self, ids: Iterable[int]) -> list[Observation]:
        return store_observations.get_observations(self, ids)

    def observations_by_project(self, project: str, limit: int = 50) -> list[Observation]:
        return store_observations.observations_by_project(self, project, limit)

    def delete_observation(self, observation_id: int) -> bool:
        return store_observations.delete_observation(self, observation_id)

    def update_last_accessed(self, ids: Iterable[int]) -> int:
        return store_observations.update_last_accessed(self, ids)

    # Retrieval

    def search(
        self,
        query: str,
        *,
        project: str | None = None,
        obs_type: str | None = None,
        date_start: int | None = None,
        date_end: int | None = None,
        limit: int = 50,
    ) -> list[Observation]:
        return store_lexical.search(
            self,
            query,
            project=project,
            obs_type=obs_type,
            date_start=date_start,
            date_end=date_end,
            limit=limit,
        )

    def hybrid_search(
        self,
        query: str,
        *,
        project: str | None = None,
        limit: int = 10,
        weights: ScoringWeights = SEARCH_WEIGHTS,
    ) -> list[SearchResult]:
        return store_retrieval.hybrid_search(
            self, query, project=project, limit=limit, weights=weights
        )

    def smart_context(
        self, project: str, *, query: str | None = None, token_budget: int | None = None
    ) -> SmartContext:
        return store_retrieval.smart_context(
            self, project, query=query, token_budget=token_budget
        )

    def timeline(self, anchor_id: int, before: int = 5, after: int = 5) -> list[dict[str, Any]]:
        return store_stats.timeline(self, anchor_id, before, after)

    # Records

    def get_or_create_session(
        self, content_session_id: str, project: str, user_prompt: str | None = None
    ) -> int:
        return store_records.get_or_create_session(
            self, content_session_id, project, user_prompt
        )

    def get_session(self, session_id: int) -> dict[str, Any] | None:
        return store_records.get_session(self, session_id)

    def complete_session(self, session_id: int) -> bool:
        return store_records.complete_session(self, session_id)

    def store_prompt(
        self, content_session_id: str, project: str, prompt_number: int, prompt_text: str
    ) -> int:
        return store_records.store_prompt(
            self, content_session_id, project, prompt_number, prompt_text
        )

    def store_summary(self, project: str, **fields: str | None) -> int:
        return store_records.store_summary(self, project, **fields)

    def prompts_by_session(self, content_session_id: str) -> list[dict[str, Any]]:
        return store_records.prompts_by_session(self, content_session_id)

    def summaries_by_project(self, project: str, limit: int = 10) -> list[dict[str, Any]]:
        return store_records.summaries_by_project(self, project, limit)

    def create_checkpoint(
        self,
        session_id: int,
        project: str,
        task: str,
        *,
        progress: str | None = None,
        next_steps: str | None = None,
        open_questions: str | None = None,
        relevant_files: Sequence[str] | None = None,
    ) -> int:
        return store_records.create_checkpoint(
            self,
            session_id,
            project,
            task,
            progress=progress,
            next_steps=next_steps,
            open_questions=open_questions,
            relevant_files=relevant_files,
        )

    def get_checkpoint(self, session_id: int) -> dict[str, Any] | None:
        return store_records.get_checkpoint(self, session_id)

    def latest_project_checkpoint(self, project: str) -> dict[str, Any] | None:
        return store_records.latest_project_checkpoint(self, project)

    # Pagination

    def list_observations(
        self, *, project: str | None = None, cursor: str | None = None, limit: int | None = None
    ) -> Page:
        return store_pagination.list_page(
            self, "observations", project=project, cursor=cursor, limit=limit
        )

    def list_summaries(
        self, *, project: str | None = None, cursor: str | None = None, limit: int | None = None
    ) -> Page:
        return store_pagination.list_page(
            self, "summaries", project=project, cursor=cursor, limit=limit
        )

    def list_prompts(
        self, *, project: str | None = None, cursor: str | None = None, limit: int | None = None
    ) -> Page:
        return store_pagination.list_page(
            self, "prompts", project=project, cursor=cursor, limit=limit
        )

    # Maintenance

    def detect_stale_observations(
        self, project: str, *, root: Path | str | None = None
    ) -> list[int]:
        return store_maintenance.detect_stale_observations(self, project, root=root)

    def mark_observations_stale(self, ids: Iterable[int], stale: bool = True) -> int:
        return store_maintenance.mark_observations_stale(self, ids, stale)

    def consolidate_observations(
        self, project: str, *, min_group_size: int | None = None, dry_run: bool = False
    ) -> ConsolidationResult:
        return store_maintenance.consolidate_observations(
            self, project, min_group_size=min_group_size, dry_run=dry_run
        )

    def decay_stats(self, project: str | None = None) -> dict[str, int]:
        return store_maintenance.decay_stats(self, project)

    def purge_observations(
        self, *, max_age_days: int, project: str | None = None, dry_run: bool = False
    ) -> int:
        return store_maintenance.purge_observations(
            self, max_age_days=max_age_days, project=project, dry_run=dry_run
        )

    def project_stats(self, project: str) -> dict[str, Any]:
        return store_stats.project_stats(self, project)

    def stats(self) -> dict[str, Any]:
        counts = {}
        for table in ("observations", "summaries", "prompts", "sessions", "checkpoints"):
            row = self.conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
            counts[table] = int(row["cnt"])
        size_bytes = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "database": {
                "path": str(self.db_path),
                "size_bytes": size_bytes,
                "schema_version": db.schema_version(self.conn),
                "sqlite_vec": db.sqlite_vec_version(self.conn),
                **counts,
            },
            "embeddings": self.embedding_stats(),
            "decay": self.decay_stats(),
        }

    # Import / export

    def export_jsonl(
        self,
        *,
        project: str | None = None,
        since_epoch: int | None = None,
        until_epoch: int | None = None,
    ) -> Iterable[str]:
        return store_import_export.export_jsonl(
            self, project=project, since_epoch=since_epoch, until_epoch=until_epoch
        )

    def import_jsonl(self, lines: Iterable[str], *, dry_run: bool = False) -> ImportResult:
        return store_import_export.import_jsonl(self, lines, dry_run=dry_run)

