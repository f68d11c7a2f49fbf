"""Duplicate detection for Q&A candidates against the published KB.

Each candidate question is embedded and searched against published KB
entries only.  When the best hit reaches the duplicate threshold the
candidate comes back flagged with a :class:`DuplicateRef`.  The check is a
pure function of the candidate and the KB contents, so running it twice
against an unchanged KB gives the same verdict.

Errors from the embedding provider or the KB store propagate.  The
ingestion pipeline catches them per candidate, emits a ``dedup_check``
error event and keeps the candidate unflagged.
"""

from __future__ import annotations

import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.kb_store import IKBStore
from src.models.ingest import DuplicateRef, QACandidate

logger = structlog.get_logger(logger_name=__name__)

DEDUP_THRESHOLD = 0.85


class Deduplicator:
    """Flags candidates whose question already exists in the KB."""

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        kb_store: IKBStore,
        threshold: float = DEDUP_THRESHOLD,
    ) -> None:
        self._embedder = embedding_provider
        self._kb_store = kb_store
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    async def check(self, candidate: QACandidate) -> QACandidate:
        """Return *candidate*, flagged as a duplicate if the KB has a match.

        Raises
        ------
        EmbeddingError, KBStoreError
            On provider failure; the candidate is left untouched.
        """
        embedding = await self._embedder.embed_single(candidate.question)
        hits = await self._kb_store.search_published(embedding, threshold=self._threshold, limit=1)
        if not hits or hits[0].similarity < self._threshold:
            return candidate.model_copy(update={"is_duplicate": False, "duplicate_of": None})

        top = hits[0]
        logger.debug(
            "candidate_duplicate_found",
            candidate_id=candidate.id,
            existing_id=top.id,
            similarity=round(top.similarity, 4),
        )
        return candidate.model_copy(
            update={
                "is_duplicate": True,
                "duplicate_of": DuplicateRef(
                    existing_id=top.id,
                    existing_question=top.question,
                    similarity=top.similarity,
                ),
            }
        )
