"""Shared pytest fixtures for the KB ingestion test suite."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import fitz
import pytest
from PIL import Image

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.kb_store import IKBStore
from src.interfaces.llm_provider import ILLMProvider
from src.models.ingest import IngestFile, QACandidate
from src.models.kb import SearchResult

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    """Settings with test keys and no .env influence."""
    defaults: dict[str, Any] = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "anthropic_api_key": "test-anthropic",
        "r2_account_id": "",
        "r2_access_key_id": "",
        "r2_secret_access_key": "",
        "r2_bucket_name": "",
        "r2_public_url": "",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def make_pdf(pages: list[str]) -> bytes:
    """Build an in-memory PDF with one ASCII text line per page (blank for "")."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page(width=595, height=842)
        if text:
            page.insert_text((72, 72), text, fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_png(width: int = 40, height: int = 30) -> bytes:
    img = Image.new("RGB", (width, height), color=(200, 30, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_candidate(**overrides: Any) -> QACandidate:
    defaults: dict[str, Any] = {
        "id": "cand-1",
        "question": "배송은 얼마나 걸리나요?",
        "answer": "보통 2-3일 걸립니다.",
        "category": "배송",
        "file_name": "faq.txt",
        "chunk_index": 0,
    }
    defaults.update(overrides)
    return QACandidate(**defaults)


def make_hit(similarity: float, **overrides: Any) -> SearchResult:
    defaults: dict[str, Any] = {
        "id": "kb-1",
        "question": "배송 기간이 어떻게 되나요?",
        "answer": "주문 후 2-3일 이내 도착합니다.",
        "category": "배송",
        "similarity": similarity,
    }
    defaults.update(overrides)
    return SearchResult(**defaults)


def text_file(name: str = "faq.txt", text: str = "", mime_type: str = "text/plain") -> IngestFile:
    return IngestFile(name=name, data=text.encode("utf-8"), mime_type=mime_type)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mock_embedding_provider() -> MagicMock:
    """Embedding provider returning a fixed 3-dim vector."""
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed_single = AsyncMock(return_value=[0.1, 0.2, 0.3])
    provider.embed = AsyncMock(side_effect=lambda texts: [[0.1, 0.2, 0.3] for _ in texts])
    provider.get_dimension.return_value = 3
    provider.get_provider_name.return_value = "mock-embedding"
    provider.is_available.return_value = True
    return provider


@pytest.fixture
def mock_kb_store() -> MagicMock:
    """KB store with no published entries."""
    store = MagicMock(spec=IKBStore)
    store.search_published = AsyncMock(return_value=[])
    store.create_entry = AsyncMock(side_effect=lambda **kwargs: f"kb-{kwargs['question'][:8]}")
    store.list_published = AsyncMock(return_value=[])
    store.get_provider_name.return_value = "mock-kb"
    return store


@pytest.fixture
def mock_llm() -> MagicMock:
    """Vision-capable LLM returning one Q&A pair."""
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock(
        return_value='[{"question": "반품은 어떻게 하나요?", "answer": "고객센터로 연락주세요.", "category": "교환/반품"}]'
    )
    llm.complete_with_images = AsyncMock(
        return_value='[{"question": "전원은 어떻게 켜나요?", "answer": "버튼을 3초간 누르세요.", "category": "사용법", "pageNumber": 1}]'
    )
    llm.supports_vision.return_value = True
    llm.get_provider_name.return_value = "mock-llm"
    llm.is_available.return_value = True
    return llm
