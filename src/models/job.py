"""Ingestion job aggregate.

A :class:`Job` owns one pipeline run: the uploaded files (until the run
ends), the append-only event log, the candidates, rendered image buffers
awaiting promotion to durable storage, and the live subscriber queues.

Unlike the frozen value models in :mod:`src.models.ingest`, a Job is
mutable internal state.  Only the job orchestrator writes to it, from the
single background task that drives the pipeline; API consumers receive a
:class:`JobSnapshot` copy.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.ingest import IngestEvent, IngestFile, QACandidate
from src.utils.errors import JobStateError


class JobStatus(str, Enum):  # noqa: UP042
    """uploading → processing → {done | error}; no other transitions."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.UPLOADING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.ERROR}),
    JobStatus.DONE: frozenset(),
    JobStatus.ERROR: frozenset(),
}

# Subscriber queues receive events, then ``None`` once the job is terminal.
SubscriberQueue = asyncio.Queue["IngestEvent | None"]


class Job:
    """Server-side handle to one ingestion run."""

    def __init__(self, job_id: str, files: list[IngestFile], created_at: float | None = None) -> None:
        self.id = job_id
        self.files: list[IngestFile] = files
        self.candidates: list[QACandidate] = []
        self.events: list[IngestEvent] = []
        self.image_buffers: dict[str, bytes] = {}
        self.subscribers: set[SubscriberQueue] = set()
        self.created_at = created_at if created_at is not None else time.monotonic()
        self.error: str | None = None
        self.task: asyncio.Task[None] | None = None
        self._status = JobStatus.UPLOADING

    @property
    def status(self) -> JobStatus:
        return self._status

    def transition(self, new_status: JobStatus) -> None:
        """Move to *new_status*, rejecting non-monotonic transitions."""
        if new_status not in _ALLOWED_TRANSITIONS[self._status]:
            raise JobStateError(
                message=f"Job {self.id}: illegal transition {self._status.value} -> {new_status.value}"
            )
        self._status = new_status

    @property
    def total_file_size(self) -> int:
        return sum(f.size for f in self.files)

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            status=self._status,
            candidate_count=len(self.candidates),
            candidates=list(self.candidates),
            events=list(self.events),
            error=self.error,
        )


class JobSnapshot(BaseModel):
    """Point-in-time, read-only view of a job for API consumers."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    status: JobStatus
    candidate_count: int
    candidates: list[QACandidate] = Field(default_factory=list)
    events: list[IngestEvent] = Field(default_factory=list)
    error: str | None = None
