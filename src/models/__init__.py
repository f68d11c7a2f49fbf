"""Domain models - re-exports all public model classes.

The models are organized across three submodules by concern:
    - kb.py      - KB search results, runtime answer results, raw Q&A pairs
    - ingest.py  - Q&A candidates, uploaded files, the typed event union
    - job.py     - The ingestion Job aggregate and its API snapshot
"""

from __future__ import annotations

from src.models.ingest import (
    IMAGE_KEY_PATTERN,
    LOCAL_SCHEME,
    ApprovalItem,
    ChunksCreatedEvent,
    CompleteEvent,
    DedupCheckingEvent,
    DuplicateRef,
    ErrorEvent,
    ErrorStage,
    FileDoneEvent,
    FileStartEvent,
    IngestEvent,
    IngestFile,
    PagesRenderedEvent,
    QACandidate,
    QAGeneratedEvent,
    QAGeneratingEvent,
    TextExtractedEvent,
    event_to_json,
    ingest_event_adapter,
    local_ref,
    original_image_key,
    page_image_key,
)
from src.models.job import Job, JobSnapshot, JobStatus
from src.models.kb import (
    AnswerPipelineResult,
    GeneratedAnswer,
    KBEntry,
    KBItemStatus,
    QAPair,
    ResponseSource,
    SearchResult,
)

__all__ = [
    "IMAGE_KEY_PATTERN",
    "LOCAL_SCHEME",
    "AnswerPipelineResult",
    "ApprovalItem",
    "ChunksCreatedEvent",
    "CompleteEvent",
    "DedupCheckingEvent",
    "DuplicateRef",
    "ErrorEvent",
    "ErrorStage",
    "FileDoneEvent",
    "FileStartEvent",
    "GeneratedAnswer",
    "IngestEvent",
    "IngestFile",
    "Job",
    "JobSnapshot",
    "JobStatus",
    "KBEntry",
    "KBItemStatus",
    "PagesRenderedEvent",
    "QACandidate",
    "QAGeneratedEvent",
    "QAGeneratingEvent",
    "QAPair",
    "ResponseSource",
    "SearchResult",
    "TextExtractedEvent",
    "event_to_json",
    "ingest_event_adapter",
    "local_ref",
    "original_image_key",
    "page_image_key",
]
