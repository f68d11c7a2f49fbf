"""Ingestion job orchestration: submission, event relay, replay and approval.

# ─── JOB LIFECYCLE (Junior Developer Guide) ────────────────────────────
#
#   submit(files) ── validate sizes ── store.reserve(job) ── create_task(_run)
#        │                                  │
#        │                         JobCapacityError (429) if the
#        │                         ceiling is reached; nothing queued
#        ▼
#   _run(job):   uploading → processing → done | error
#        │
#        └─ for each event from IngestPipeline.stream():
#             1. pages_rendered: move page PNGs into job.image_buffers
#             2. qa_generated: rewrite local:// refs to served URLs
#             3. append to job.events  (authoritative history)
#             4. put_nowait() on every subscriber queue
#
#   subscribe(job_id):
#       copy job.events and register a queue in the same synchronous step,
#       so no event can fall between replay and live delivery.  A job that
#       is already terminal gets replay only and the stream ends.
#
#   approve(job_id, items):  terminal jobs only (409 otherwise).  Each item
#       is saved independently; the call returns how many were saved.
#
# The background task's outcome is always written back onto the job: an
# exception escaping the pipeline marks the job ``error`` with a
# pipeline-scoped error event, and the uploaded files are released in
# every case.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import re
import uuid
from collections.abc import AsyncGenerator
from urllib.parse import urlparse

from src.interfaces.image_store import IImageStore
from src.interfaces.job_store import IJobStore
from src.interfaces.kb_store import IKBStore
from src.models.ingest import (
    IMAGE_KEY_PATTERN,
    LOCAL_SCHEME,
    ApprovalItem,
    ErrorEvent,
    ErrorStage,
    IngestEvent,
    IngestFile,
    PagesRenderedEvent,
    QACandidate,
    QAGeneratedEvent,
    original_image_key,
)
from src.models.job import Job, JobSnapshot, JobStatus, SubscriberQueue
from src.pipeline.ingest_pipeline import IngestPipeline, durable_image_key
from src.services.ingestion.text_extractor import is_image
from src.utils.errors import JobNotFoundError, JobStateError, UploadValidationError
from src.utils.logging import bind_job_context, get_logger
from src.utils.media import detect_media_type, image_extension

MAX_FILE_SIZE = 50 * 1024 * 1024
MAX_TOTAL_SIZE = 200 * 1024 * 1024

_SERVED_IMAGE_PATH = re.compile(rf"/ingest/jobs/(?P<job_id>[^/]+)/images/(?P<key>{IMAGE_KEY_PATTERN})\.png$")
_LOCAL_KEY = re.compile(rf"^{IMAGE_KEY_PATTERN}$")


class JobOrchestrator:
    """Owns ingestion jobs from upload to approval.

    Parameters
    ----------
    pipeline:
        Runs extraction, generation and dedup for a job's files.
    job_store:
        Registry enforcing TTL retention and the concurrency ceiling.
    kb_store:
        Receives approved candidates.
    image_store:
        Durable storage for approved candidates' images.  When ``None``
        (or an upload fails) the served local URL is kept instead.
    public_base_url:
        Prefix for served image URLs; empty gives server-relative URLs.
    """

    def __init__(
        self,
        pipeline: IngestPipeline,
        job_store: IJobStore,
        kb_store: IKBStore,
        image_store: IImageStore | None = None,
        public_base_url: str = "",
        max_file_size: int = MAX_FILE_SIZE,
        max_total_size: int = MAX_TOTAL_SIZE,
        created_by: str = "kb-ingest",
    ) -> None:
        self._pipeline = pipeline
        self._store = job_store
        self._kb_store = kb_store
        self._image_store = image_store
        self._public_base_url = public_base_url.rstrip("/")
        self._max_file_size = max_file_size
        self._max_total_size = max_total_size
        self._created_by = created_by
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, files: list[IngestFile]) -> Job:
        """Validate *files*, register a job and start its background task.

        Must be called from a running event loop.

        Raises
        ------
        UploadValidationError
            No files, a file over the per-file limit, or a batch over the
            total limit.
        JobCapacityError
            The concurrency ceiling is reached; no job is created.
        """
        self.validate_files(files)

        job = Job(job_id=str(uuid.uuid4()), files=list(files))
        for index, file in enumerate(files):
            if is_image(file.mime_type):
                job.image_buffers[original_image_key(index)] = file.data

        self._store.reserve(job)
        job.task = asyncio.create_task(self._run(job), name=f"ingest-job-{job.id}")
        self._logger.info(
            "job_submitted",
            job_id=job.id,
            files=len(files),
            total_bytes=job.total_file_size,
        )
        return job

    def validate_files(self, files: list[IngestFile]) -> None:
        if not files:
            raise UploadValidationError(message="No files uploaded")
        for file in files:
            if file.size > self._max_file_size:
                raise UploadValidationError(
                    message=f"{file.name} is {file.size} bytes; the per-file limit is {self._max_file_size}"
                )
        total = sum(f.size for f in files)
        if total > self._max_total_size:
            raise UploadValidationError(
                message=f"Upload is {total} bytes; the total limit is {self._max_total_size}"
            )

    # ------------------------------------------------------------------
    # Background run
    # ------------------------------------------------------------------

    async def _run(self, job: Job) -> None:
        bind_job_context(job.id)
        try:
            job.transition(JobStatus.PROCESSING)
            async for event in self._pipeline.stream(job.files, run_id=job.id):
                self._record(job, event)
            self._finish(job, JobStatus.DONE)
        except asyncio.CancelledError:
            job.error = "Job cancelled"
            self._finish(job, JobStatus.ERROR)
            raise
        except Exception as exc:
            self._logger.exception("job_failed", job_id=job.id, error=str(exc))
            job.error = str(exc)
            self._record(job, ErrorEvent(stage=ErrorStage.PIPELINE, message=str(exc)))
            self._finish(job, JobStatus.ERROR)
        finally:
            job.files = []

    def _record(self, job: Job, event: IngestEvent) -> None:
        """Append *event* to the job log and fan it out to subscribers."""
        if isinstance(event, PagesRenderedEvent):
            job.image_buffers.update(event.page_images)
            event = event.model_copy(update={"page_images": {}})
        elif isinstance(event, QAGeneratedEvent):
            served = [self._with_served_image(job, c) for c in event.candidates]
            event = event.model_copy(update={"candidates": served})
            job.candidates.extend(served)

        job.events.append(event)
        for queue in list(job.subscribers):
            queue.put_nowait(event)

        self._logger.debug("job_event", job_id=job.id, event_type=event.type)

    def _finish(self, job: Job, status: JobStatus) -> None:
        if not job.status.is_terminal:
            job.transition(status)
        for queue in list(job.subscribers):
            queue.put_nowait(None)
        job.subscribers.clear()
        self._logger.info(
            "job_finished",
            job_id=job.id,
            status=job.status.value,
            candidates=len(job.candidates),
            events=len(job.events),
        )

    def _with_served_image(self, job: Job, candidate: QACandidate) -> QACandidate:
        url = candidate.image_url
        if not url or not url.startswith(LOCAL_SCHEME):
            return candidate
        key = url[len(LOCAL_SCHEME):]
        served = self.image_url(job.id, key) if key in job.image_buffers else None
        return candidate.model_copy(update={"image_url": served})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(message=f"Job {job_id} not found or expired")
        return job

    def get_snapshot(self, job_id: str) -> JobSnapshot:
        return self.get_job(job_id).snapshot()

    def get_image(self, job_id: str, key: str) -> bytes:
        data = self.get_job(job_id).image_buffers.get(key)
        if data is None:
            raise JobNotFoundError(message=f"Image {key} not found for job {job_id}")
        return data

    def image_url(self, job_id: str, key: str) -> str:
        return f"{self._public_base_url}/ingest/jobs/{job_id}/images/{key}.png"

    def active_count(self) -> int:
        return self._store.active_count()

    def subscribe(self, job_id: str) -> AsyncGenerator[IngestEvent, None]:
        """Return the job's full event history followed by live events.

        The replay copy and the live registration happen here, before the
        returned iterator is first awaited.
        """
        job = self.get_job(job_id)
        replay = list(job.events)
        queue: SubscriberQueue | None = None
        if not job.status.is_terminal:
            queue = asyncio.Queue()
            job.subscribers.add(queue)
        return self._drain(job, replay, queue)

    async def _drain(
        self,
        job: Job,
        replay: list[IngestEvent],
        queue: SubscriberQueue | None,
    ) -> AsyncGenerator[IngestEvent, None]:
        try:
            for event in replay:
                yield event
            if queue is None:
                return
            while (event := await queue.get()) is not None:
                yield event
        finally:
            if queue is not None:
                job.subscribers.discard(queue)

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def approve(self, job_id: str, items: list[ApprovalItem]) -> int:
        """Persist approved candidates as KB entries; return how many saved.

        Raises
        ------
        JobNotFoundError
            Unknown or expired job.
        JobStateError
            The job is still uploading or processing.
        """
        job = self.get_job(job_id)
        if not job.status.is_terminal:
            raise JobStateError(message=f"Job {job_id} is {job.status.value}; wait for it to finish")

        candidates = {c.id: c for c in job.candidates}
        resolved: dict[str, str | None] = {}
        saved = 0

        for item in items:
            candidate = candidates.get(item.id)
            if candidate is None:
                self._logger.warning("approval_unknown_candidate", job_id=job_id, candidate_id=item.id)
                continue

            try:
                image_url = await self._resolve_image(job, item.image_url or candidate.image_url, resolved)
            except UploadValidationError as exc:
                self._logger.warning(
                    "approval_invalid_image_url", job_id=job_id, candidate_id=item.id, error=exc.message
                )
                continue

            try:
                await self._kb_store.create_entry(
                    question=item.question,
                    answer=item.answer,
                    category=item.category,
                    image_url=image_url,
                    created_by=self._created_by,
                )
            except Exception as exc:
                self._logger.warning(
                    "approval_save_failed", job_id=job_id, candidate_id=item.id, error=str(exc)
                )
                continue
            saved += 1

        self._logger.info("candidates_approved", job_id=job_id, requested=len(items), saved=saved)
        return saved

    async def _resolve_image(self, job: Job, url: str | None, resolved: dict[str, str | None]) -> str | None:
        if not url:
            return None

        key = self._image_key(job, url)
        if key is None:
            return url
        if key in resolved:
            return resolved[key]

        data = job.image_buffers.get(key)
        if data is None:
            resolved[key] = None
            return None

        durable = self.image_url(job.id, key)
        if self._image_store is not None:
            media_type = detect_media_type(data)
            try:
                durable = await self._image_store.upload(
                    data, durable_image_key(job.id, key, image_extension(media_type)), media_type
                )
            except Exception as exc:
                self._logger.warning("image_promotion_failed", job_id=job.id, key=key, error=str(exc))
        resolved[key] = durable
        return durable

    def _image_key(self, job: Job, url: str) -> str | None:
        """Return the buffer key *url* refers to, or ``None`` for external URLs.

        Raises :class:`UploadValidationError` for anything that is neither a
        ``local://`` reference nor an http(s) URL (or a server-relative
        image path).
        """
        if url.startswith(LOCAL_SCHEME):
            key = url[len(LOCAL_SCHEME):]
            if not _LOCAL_KEY.match(key):
                raise UploadValidationError(message=f"Malformed local image reference: {url}")
            return key

        parsed = urlparse(url)
        is_absolute = parsed.scheme in ("http", "https") and bool(parsed.netloc)
        is_relative = not parsed.scheme and not parsed.netloc and url.startswith("/")
        if not (is_absolute or is_relative):
            raise UploadValidationError(message=f"Malformed image URL: {url}")

        match = _SERVED_IMAGE_PATH.search(parsed.path)
        if match and match.group("job_id") == job.id:
            return match.group("key")
        if is_relative:
            raise UploadValidationError(message=f"Image path does not belong to job {job.id}: {url}")
        return None

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_gc(self, interval_seconds: float) -> None:
        """Sweep expired jobs every *interval_seconds* until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self._store.sweep()
            if removed:
                self._logger.info("job_gc_sweep", removed=removed, retained=len(self._store))
