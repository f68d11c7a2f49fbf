"""ChromaDB knowledge-base store adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IKBStore`.  One
collection record per KB item: the document is the question text, the
vector is the question embedding, and metadata carries the answer,
category, image URL, status and provenance.  The collection uses cosine
space, so ``similarity = 1 - distance``.

ChromaDB calls are synchronous; they run through ``asyncio.to_thread`` so
a slow disk does not stall the event loop (the answer router runs under a
tight deadline).
"""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import Any

# Disable ChromaDB telemetry before importing chromadb.  The bundled
# PostHog client can raise on version mismatch; switching it off at both
# the env-var and SDK level keeps startup quiet.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.kb_store import IKBStore
from src.models.kb import KBEntry, KBItemStatus, SearchResult
from src.utils.errors import KBStoreError

logger = structlog.get_logger(logger_name=__name__)


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default ONNX model.

    Every vector is computed by the injected :class:`IEmbeddingProvider`
    and passed explicitly.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        raise NotImplementedError("KB store uses pre-computed embeddings")

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBKBStore(IKBStore):
    """KB store backed by a local, persistent ChromaDB collection.

    Parameters
    ----------
    embedding_provider:
        Embeds question text on :meth:`create_entry`.
    persist_directory:
        On-disk location of the ChromaDB database.
    collection_name:
        Collection holding the KB items.
    client:
        Optional pre-built client (tests pass ``chromadb.EphemeralClient()``).
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "knowledge_items",
        client: Any | None = None,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        # A collection created by another embedding-function config makes
        # newer ChromaDB versions raise ValueError; reopen it as persisted.
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

    # ------------------------------------------------------------------
    # IKBStore implementation
    # ------------------------------------------------------------------

    async def search_published(
        self,
        embedding: list[float],
        threshold: float,
        limit: int,
    ) -> list[SearchResult]:
        """Cosine search over published items, keeping ``similarity >= threshold``."""
        if limit <= 0:
            return []
        try:
            return await asyncio.to_thread(self._search_sync, embedding, threshold, limit)
        except KBStoreError:
            raise
        except Exception as exc:
            raise KBStoreError(
                message=f"ChromaDB search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def create_entry(
        self,
        question: str,
        answer: str,
        category: str,
        image_url: str | None = None,
        created_by: str = "kb-ingest",
    ) -> str:
        """Embed *question* and insert a ``draft`` KB record."""
        embedding = await self._embedding_provider.embed_single(question)
        entry_id = str(uuid.uuid4())
        metadata = {
            "answer": answer,
            "category": category,
            # ChromaDB metadata values cannot be None.
            "image_url": image_url or "",
            "status": KBItemStatus.DRAFT.value,
            "created_by": created_by,
            "created_at": datetime.now(tz=timezone.utc).isoformat(),  # noqa: UP017
        }
        try:
            await asyncio.to_thread(
                self._collection.add,
                ids=[entry_id],
                embeddings=[embedding],
                documents=[question],
                metadatas=[metadata],
            )
        except Exception as exc:
            raise KBStoreError(
                message=f"ChromaDB insert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("kb_entry_created", entry_id=entry_id, category=category, has_image=bool(image_url))
        return entry_id

    async def list_published(self) -> list[KBEntry]:
        try:
            page = await asyncio.to_thread(
                self._collection.get,
                where={"status": KBItemStatus.PUBLISHED.value},
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as exc:
            raise KBStoreError(
                message=f"ChromaDB list failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ids = page.get("ids") or []
        documents = page.get("documents") or [""] * len(ids)
        metadatas = page.get("metadatas") or [{}] * len(ids)
        embeddings = page.get("embeddings")
        if embeddings is None:
            embeddings = [[] for _ in ids]

        return [
            KBEntry(
                id=entry_id,
                question=doc or "",
                answer=str(meta.get("answer", "")),
                category=str(meta.get("category", "")),
                embedding=[float(v) for v in vector],
                image_url=meta.get("image_url") or None,
            )
            for entry_id, doc, meta, vector in zip(ids, documents, metadatas, embeddings, strict=True)
        ]

    def get_provider_name(self) -> str:
        return "chromadb"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _search_sync(self, embedding: list[float], threshold: float, limit: int) -> list[SearchResult]:
        total = self._collection.count()
        if total == 0:
            return []

        results = self._collection.query(
            query_embeddings=[embedding],
            n_results=min(limit, total),
            where={"status": KBItemStatus.PUBLISHED.value},
            include=["documents", "metadatas", "distances"],
        )
        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results["documents"] else [""] * len(ids)
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [1.0] * len(ids)

        hits: list[SearchResult] = []
        for entry_id, doc, meta, distance in zip(ids, documents, metadatas, distances, strict=True):
            similarity = max(-1.0, min(1.0, 1.0 - float(distance)))
            if similarity < threshold:
                continue
            hits.append(
                SearchResult(
                    id=entry_id,
                    question=doc or "",
                    answer=str(meta.get("answer", "")),
                    category=str(meta.get("category", "")),
                    similarity=similarity,
                    image_url=meta.get("image_url") or None,
                )
            )

        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        logger.debug(
            "kb_search",
            threshold=threshold,
            limit=limit,
            results=len(hits),
            top_similarity=hits[0].similarity if hits else None,
        )
        return hits
