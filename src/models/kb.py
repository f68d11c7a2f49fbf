"""Knowledge-base and answer-routing models.

A KB item is a published (or draft) Q&A pair.  The models here describe
what vector search returns and what the answer router hands back to the
chat channel.  All models are frozen; build new instances with
``model_copy(update={...})``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResponseSource(str, Enum):  # noqa: UP042
    """Where a runtime answer came from."""

    KB_MATCH = "kb_match"          # Verbatim KB answer, no generation
    AI_GENERATED = "ai_generated"  # LLM answer grounded on KB context
    FALLBACK = "fallback"          # Fixed apology message


class KBItemStatus(str, Enum):  # noqa: UP042
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class SearchResult(_CamelModel):
    """One KB hit from vector search, ordered by similarity descending."""

    id: str
    question: str
    answer: str
    category: str
    similarity: float = Field(ge=-1.0, le=1.0, description="Cosine similarity; 1 = identical.")
    image_url: str | None = None


class KBEntry(_CamelModel):
    """A KB record as listed for maintenance commands (dedupe)."""

    id: str
    question: str
    answer: str
    category: str
    embedding: list[float] = Field(default_factory=list, repr=False)
    image_url: str | None = None


class QAPair(_CamelModel):
    """A raw Q&A pair parsed from a generator response."""

    question: str
    answer: str
    category: str
    page_number: int | None = None


class GeneratedAnswer(_CamelModel):
    """Answer text plus the 1-based index of the context item the model used."""

    answer: str
    context_ref_index: int | None = None


class AnswerPipelineResult(_CamelModel):
    """Outcome of routing one live question."""

    answer: str
    source: ResponseSource
    matched_kb_id: str | None = None
    similarity_score: float | None = None
    image_url: str | None = None
    kb_results: list[SearchResult] = Field(default_factory=list)
