"""Abstract base class for the knowledge-base store.

The KB store holds the permanent Q&A records (published or draft) along
with the embedding of each question.  The ingestion side reads it for
duplicate detection and writes approved candidates into it; the runtime
side reads it to answer live questions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.kb import KBEntry, SearchResult


# Concrete implementations: ChromaDBKBStore
# Located in: src/providers/kb_store/
class IKBStore(ABC):
    """Contract for KB persistence and similarity search."""

    @abstractmethod
    async def search_published(
        self,
        embedding: list[float],
        threshold: float,
        limit: int,
    ) -> list[SearchResult]:
        """Return published entries with similarity at or above *threshold*.

        Parameters
        ----------
        embedding:
            Query vector from :class:`~src.interfaces.embedding_provider.IEmbeddingProvider`.
        threshold:
            Minimum cosine similarity (inclusive).  ``0.0`` returns the
            closest entries that are not dissimilar.
        limit:
            Maximum number of results.

        Returns
        -------
        list[SearchResult]
            Ordered by similarity, highest first.

        Raises
        ------
        src.utils.errors.KBStoreError
            If the underlying store fails.
        """

    @abstractmethod
    async def create_entry(
        self,
        question: str,
        answer: str,
        category: str,
        image_url: str | None = None,
        created_by: str = "kb-ingest",
    ) -> str:
        """Persist a new KB entry (status ``draft``) and return its id.

        The question text is embedded as part of the write.
        """

    @abstractmethod
    async def list_published(self) -> list[KBEntry]:
        """Return every published entry with its stored embedding."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""
