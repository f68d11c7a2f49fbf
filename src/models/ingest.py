"""Ingestion models: Q&A candidates and the typed progress-event union.

# ─── EVENT STREAM (Junior Developer Guide) ─────────────────────────────
#
# The ingestion pipeline reports progress as a totally ordered stream of
# events.  Each event type is its own frozen Pydantic model with a
# ``type`` literal, and ``IngestEvent`` is the discriminated union of all
# of them.  Consumers either ``match`` on the class or read ``event.type``.
#
#   file_start → text_extracted → (pages_rendered | chunks_created)
#     → qa_generating → dedup_checking → qa_generated … → file_done
#   … next file …
#   complete
#
# ``error`` events can appear anywhere; ``stage`` says which unit failed.
#
# Events serialize with camelCase keys (``fileName``, ``chunkIndex``) so
# browser clients of the SSE stream get the same JSON shape as before.
# ``PagesRenderedEvent.page_images`` holds raw PNG bytes and is excluded
# from serialization; the job orchestrator moves those bytes onto the job
# before the event is broadcast.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

# Images held in job memory are referenced as ``local://<key>`` until the
# job orchestrator rewrites them to served or durable URLs.  Keys are
# namespaced by the file's position in the upload so two files in one job
# never share a key.
LOCAL_SCHEME = "local://"
IMAGE_KEY_PATTERN = r"\d+-(?:page-\d+|original)"


def page_image_key(file_index: int, page_number: int) -> str:
    return f"{file_index}-page-{page_number}"


def original_image_key(file_index: int) -> str:
    return f"{file_index}-original"


def local_ref(key: str) -> str:
    return f"{LOCAL_SCHEME}{key}"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


class DuplicateRef(_CamelModel):
    """The existing KB item a candidate duplicates."""

    existing_id: str
    existing_question: str
    similarity: float


class QACandidate(_CamelModel):
    """A machine-generated Q&A pair awaiting human approval."""

    id: str
    question: str
    answer: str
    category: str
    image_url: str | None = None
    file_name: str
    chunk_index: int = Field(ge=0, description="Chunk index, or 0 for page-batch mode.")
    page_number: int | None = None
    is_duplicate: bool = False
    duplicate_of: DuplicateRef | None = None


class ApprovalItem(_CamelModel):
    """A reviewer-edited candidate submitted for approval."""

    id: str = Field(min_length=1)
    question: str
    answer: str
    category: str
    image_url: str | None = None

    @field_validator("question", "answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class IngestFile(BaseModel):
    """One uploaded file held in memory for the length of a pipeline run."""

    model_config = ConfigDict(frozen=True)

    name: str
    data: bytes = Field(repr=False)
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class ErrorStage(str, Enum):  # noqa: UP042
    """The unit of work an error event is scoped to."""

    TEXT_EXTRACTION = "text_extraction"
    PAGE_RENDERING = "page_rendering"
    R2_UPLOAD = "r2_upload"
    QA_GENERATION = "qa_generation"
    DEDUP_CHECK = "dedup_check"
    PIPELINE = "pipeline"


class _EventBase(_CamelModel):
    timestamp: datetime = Field(default_factory=_utcnow)


class FileStartEvent(_EventBase):
    type: Literal["file_start"] = "file_start"
    file_name: str
    mime_type: str


class TextExtractedEvent(_EventBase):
    type: Literal["text_extracted"] = "text_extracted"
    file_name: str
    text_length: int


class ChunksCreatedEvent(_EventBase):
    type: Literal["chunks_created"] = "chunks_created"
    file_name: str
    chunk_count: int


class PagesRenderedEvent(_EventBase):
    type: Literal["pages_rendered"] = "pages_rendered"
    file_name: str
    page_count: int
    page_images: dict[str, bytes] = Field(default_factory=dict, exclude=True, repr=False)


class QAGeneratingEvent(_EventBase):
    type: Literal["qa_generating"] = "qa_generating"
    file_name: str
    chunk_index: int
    total_chunks: int


class DedupCheckingEvent(_EventBase):
    type: Literal["dedup_checking"] = "dedup_checking"
    file_name: str
    candidate_count: int


class QAGeneratedEvent(_EventBase):
    type: Literal["qa_generated"] = "qa_generated"
    file_name: str
    chunk_index: int
    candidates: list[QACandidate]
    count: int


class FileDoneEvent(_EventBase):
    type: Literal["file_done"] = "file_done"
    file_name: str
    candidate_count: int


class CompleteEvent(_EventBase):
    type: Literal["complete"] = "complete"
    total_candidates: int
    duplicates: int
    unique: int


class ErrorEvent(_EventBase):
    type: Literal["error"] = "error"
    stage: ErrorStage
    message: str
    file_name: str | None = None
    chunk_index: int | None = None
    page_number: int | None = None
    question: str | None = None


IngestEvent = Annotated[
    Union[  # noqa: UP007
        FileStartEvent,
        TextExtractedEvent,
        ChunksCreatedEvent,
        PagesRenderedEvent,
        QAGeneratingEvent,
        DedupCheckingEvent,
        QAGeneratedEvent,
        FileDoneEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

ingest_event_adapter: TypeAdapter[IngestEvent] = TypeAdapter(IngestEvent)


def event_to_json(event: IngestEvent) -> str:
    """Serialize an event with camelCase keys (binary payloads excluded)."""
    return event.model_dump_json(by_alias=True)
