"""Unit tests for the storage adapters - ChromaDB KB store and R2 image store."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import chromadb
import pytest
from botocore.exceptions import ClientError

from src.models.kb import KBItemStatus
from src.providers.image_store.r2_image_store import R2ImageStore
from src.providers.kb_store.chromadb_kb_store import ChromaDBKBStore
from src.utils.errors import ConfigurationError, ImageStoreError, KBStoreError
from tests.conftest import make_settings

# ======================================================================
# ChromaDB KB store
# ======================================================================


@pytest.fixture
def kb_store(mock_embedding_provider: MagicMock) -> ChromaDBKBStore:
    # Ephemeral clients share one in-memory system per process, so each
    # test gets its own collection.
    return ChromaDBKBStore(
        embedding_provider=mock_embedding_provider,
        collection_name=f"kb_test_{uuid.uuid4().hex}",
        client=chromadb.EphemeralClient(),
    )


def _add(
    store: ChromaDBKBStore,
    entry_id: str,
    question: str,
    embedding: list[float],
    status: KBItemStatus = KBItemStatus.PUBLISHED,
    image_url: str = "",
) -> None:
    store._collection.add(
        ids=[entry_id],
        embeddings=[embedding],
        documents=[question],
        metadatas=[{"answer": f"{question} 답변", "category": "배송", "image_url": image_url, "status": status.value}],
    )


class TestChromaDBKBStore:
    @pytest.mark.asyncio
    async def test_search_empty_collection(self, kb_store: ChromaDBKBStore) -> None:
        assert await kb_store.search_published([1.0, 0.0, 0.0], threshold=0.0, limit=3) == []

    @pytest.mark.asyncio
    async def test_search_orders_by_similarity(self, kb_store: ChromaDBKBStore) -> None:
        _add(kb_store, "near", "배송 기간?", [1.0, 0.1, 0.0])
        _add(kb_store, "exact", "배송은 언제?", [1.0, 0.0, 0.0])
        _add(kb_store, "far", "결제 수단?", [0.0, 1.0, 0.0])

        hits = await kb_store.search_published([1.0, 0.0, 0.0], threshold=0.5, limit=3)

        assert [h.id for h in hits] == ["exact", "near"]
        assert hits[0].similarity == pytest.approx(1.0, abs=1e-4)
        assert hits[0].answer == "배송은 언제? 답변"
        assert hits[0].image_url is None

    @pytest.mark.asyncio
    async def test_search_ignores_drafts(self, kb_store: ChromaDBKBStore) -> None:
        _add(kb_store, "draft", "배송은 언제?", [1.0, 0.0, 0.0], status=KBItemStatus.DRAFT)

        assert await kb_store.search_published([1.0, 0.0, 0.0], threshold=0.0, limit=3) == []

    @pytest.mark.asyncio
    async def test_search_respects_limit(self, kb_store: ChromaDBKBStore) -> None:
        for i in range(4):
            _add(kb_store, f"kb-{i}", f"질문 {i}", [1.0, 0.01 * i, 0.0])

        hits = await kb_store.search_published([1.0, 0.0, 0.0], threshold=0.0, limit=2)

        assert [h.id for h in hits] == ["kb-0", "kb-1"]

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing(self, kb_store: ChromaDBKBStore) -> None:
        _add(kb_store, "kb-1", "질문", [1.0, 0.0, 0.0])
        assert await kb_store.search_published([1.0, 0.0, 0.0], threshold=0.0, limit=0) == []

    @pytest.mark.asyncio
    async def test_create_entry_stores_draft(
        self, kb_store: ChromaDBKBStore, mock_embedding_provider: MagicMock
    ) -> None:
        entry_id = await kb_store.create_entry(
            question="반품 기한은?",
            answer="수령 후 7일 이내입니다.",
            category="교환/반품",
            image_url="https://cdn.example.com/a.png",
            created_by="reviewer",
        )

        mock_embedding_provider.embed_single.assert_awaited_once_with("반품 기한은?")
        record = kb_store._collection.get(ids=[entry_id], include=["documents", "metadatas"])
        meta = record["metadatas"][0]
        assert record["documents"][0] == "반품 기한은?"
        assert meta["status"] == "draft"
        assert meta["created_by"] == "reviewer"
        assert meta["image_url"] == "https://cdn.example.com/a.png"
        assert await kb_store.list_published() == []

    @pytest.mark.asyncio
    async def test_list_published(self, kb_store: ChromaDBKBStore) -> None:
        _add(kb_store, "kb-1", "배송은 언제?", [1.0, 0.0, 0.0], image_url="https://cdn.example.com/x.png")
        _add(kb_store, "kb-2", "초안", [0.0, 1.0, 0.0], status=KBItemStatus.DRAFT)

        entries = await kb_store.list_published()

        assert [e.id for e in entries] == ["kb-1"]
        assert entries[0].embedding == pytest.approx([1.0, 0.0, 0.0])
        assert entries[0].image_url == "https://cdn.example.com/x.png"

    @pytest.mark.asyncio
    async def test_backend_failure_becomes_kb_store_error(self, mock_embedding_provider: MagicMock) -> None:
        client = MagicMock()
        client.get_or_create_collection.return_value.count.side_effect = RuntimeError("disk I/O error")
        store = ChromaDBKBStore(embedding_provider=mock_embedding_provider, client=client)

        with pytest.raises(KBStoreError, match="disk I/O error"):
            await store.search_published([1.0, 0.0, 0.0], threshold=0.3, limit=3)


# ======================================================================
# R2 image store
# ======================================================================


def _r2_settings(**overrides):
    values = {
        "r2_account_id": "acct",
        "r2_access_key_id": "key",
        "r2_secret_access_key": "secret",
        "r2_bucket_name": "kb-bucket",
        "r2_public_url": "https://img.example.com/",
    }
    values.update(overrides)
    return make_settings(**values)


class TestR2ImageStore:
    def test_requires_configuration(self) -> None:
        with pytest.raises(ConfigurationError):
            R2ImageStore(_r2_settings(r2_public_url=""))

    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self) -> None:
        client = MagicMock()
        store = R2ImageStore(_r2_settings(), client=client)

        url = await store.upload(b"\x89PNG", "kb-images/job-1/0-page-1.png", "image/png")

        assert url == "https://img.example.com/kb-images/job-1/0-page-1.png"
        client.put_object.assert_called_once_with(
            Bucket="kb-bucket",
            Key="kb-images/job-1/0-page-1.png",
            Body=b"\x89PNG",
            ContentType="image/png",
        )

    @pytest.mark.asyncio
    async def test_client_error_becomes_image_store_error(self) -> None:
        client = MagicMock()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        store = R2ImageStore(_r2_settings(), client=client)

        with pytest.raises(ImageStoreError) as exc_info:
            await store.upload(b"data", "kb-images/job-1/0-original.jpg", "image/jpeg")

        assert exc_info.value.provider_name == "r2"
