"""Unit tests for the job orchestrator - relay, replay, approval and capacity."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.image_store import IImageStore
from src.models.ingest import (
    ApprovalItem,
    CompleteEvent,
    ErrorEvent,
    ErrorStage,
    FileDoneEvent,
    FileStartEvent,
    IngestEvent,
    IngestFile,
    PagesRenderedEvent,
    QAGeneratedEvent,
)
from src.models.job import Job, JobStatus
from src.pipeline.job_orchestrator import JobOrchestrator
from src.providers.job_store.memory_job_store import MemoryJobStore
from src.utils.errors import (
    JobCapacityError,
    JobNotFoundError,
    JobStateError,
    UploadValidationError,
)
from tests.conftest import make_candidate, make_png, text_file

_PNG = make_png()


class _ScriptedPipeline:
    """Stands in for IngestPipeline: yields fixed events, optionally pausing."""

    def __init__(
        self,
        events: list[IngestEvent],
        gate: asyncio.Event | None = None,
        pause_after: int = 1,
        error: Exception | None = None,
    ) -> None:
        self._events = events
        self._gate = gate
        self._pause_after = pause_after
        self._error = error

    async def stream(self, files: list[IngestFile], run_id: str | None = None) -> AsyncIterator[IngestEvent]:
        for index, event in enumerate(self._events):
            if self._gate is not None and index == self._pause_after:
                await self._gate.wait()
            yield event
        if self._error is not None:
            raise self._error


def _script(candidate_count: int = 2) -> list[IngestEvent]:
    candidates = [
        make_candidate(id=f"c{i}", question=f"질문 {i}?", image_url="local://0-page-1")
        for i in range(candidate_count)
    ]
    if candidate_count:
        candidates[-1] = candidates[-1].model_copy(update={"image_url": "local://0-page-9"})
    return [
        FileStartEvent(file_name="m.pdf", mime_type="application/pdf"),
        PagesRenderedEvent(file_name="m.pdf", page_count=1, page_images={"0-page-1": _PNG}),
        QAGeneratedEvent(file_name="m.pdf", chunk_index=0, candidates=candidates, count=len(candidates)),
        FileDoneEvent(file_name="m.pdf", candidate_count=len(candidates)),
        CompleteEvent(total_candidates=len(candidates), duplicates=0, unique=len(candidates)),
    ]


def _orchestrator(
    pipeline: _ScriptedPipeline,
    kb_store: MagicMock,
    image_store: IImageStore | None = None,
    max_active: int = 3,
    **kwargs,
) -> JobOrchestrator:
    return JobOrchestrator(
        pipeline=pipeline,  # type: ignore[arg-type]
        job_store=MemoryJobStore(max_active=max_active),
        kb_store=kb_store,
        image_store=image_store,
        **kwargs,
    )


async def _finished_job(orchestrator: JobOrchestrator, files: list[IngestFile] | None = None) -> Job:
    job = orchestrator.submit(files or [text_file(text="x" * 10)])
    assert job.task is not None
    await job.task
    return job


async def _cancel(*jobs: Job) -> None:
    for job in jobs:
        if job.task is not None and not job.task.done():
            job.task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await job.task


# ======================================================================
# Submission and relay
# ======================================================================


class TestSubmission:
    @pytest.mark.asyncio
    async def test_job_runs_to_done(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)

        job = await _finished_job(orchestrator)

        assert job.status is JobStatus.DONE
        assert job.files == []
        assert [e.type for e in job.events] == [
            "file_start",
            "pages_rendered",
            "qa_generated",
            "file_done",
            "complete",
        ]

    @pytest.mark.asyncio
    async def test_local_refs_rewritten_to_served_urls(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(
            _ScriptedPipeline(_script()), mock_kb_store, public_base_url="https://kb.example.com/"
        )

        job = await _finished_job(orchestrator)

        urls = [c.image_url for c in job.candidates]
        assert urls == [f"https://kb.example.com/ingest/jobs/{job.id}/images/0-page-1.png", None]
        assert job.image_buffers["0-page-1"] == _PNG
        rendered = job.events[1]
        assert isinstance(rendered, PagesRenderedEvent)
        assert rendered.page_images == {}

    @pytest.mark.asyncio
    async def test_image_uploads_buffered_at_submit(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline([]), mock_kb_store)
        photo = IngestFile(name="p.png", data=_PNG, mime_type="image/png")

        job = await _finished_job(orchestrator, [text_file(text="hello"), photo])

        assert orchestrator.get_image(job.id, "1-original") == _PNG
        with pytest.raises(JobNotFoundError):
            orchestrator.get_image(job.id, "0-original")

    @pytest.mark.parametrize(
        ("files", "message"),
        [
            ([], "No files"),
            ([text_file(text="x" * 11)], "per-file limit"),
            ([text_file(text="x" * 8), text_file(text="x" * 8)], "total limit"),
        ],
    )
    def test_validation(self, mock_kb_store: MagicMock, files: list[IngestFile], message: str) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline([]), mock_kb_store, max_file_size=10, max_total_size=15)
        with pytest.raises(UploadValidationError, match=message):
            orchestrator.validate_files(files)

    @pytest.mark.asyncio
    async def test_fourth_concurrent_job_rejected(self, mock_kb_store: MagicMock) -> None:
        gate = asyncio.Event()
        orchestrator = _orchestrator(_ScriptedPipeline(_script(), gate=gate), mock_kb_store, max_active=3)
        jobs = [orchestrator.submit([text_file(text="x")]) for _ in range(3)]

        with pytest.raises(JobCapacityError):
            orchestrator.submit([text_file(text="x")])

        assert orchestrator.active_count() == 3
        await _cancel(*jobs)

    @pytest.mark.asyncio
    async def test_pipeline_crash_marks_job_error(self, mock_kb_store: MagicMock) -> None:
        pipeline = _ScriptedPipeline(_script()[:1], error=RuntimeError("renderer segfault"))
        orchestrator = _orchestrator(pipeline, mock_kb_store)

        job = await _finished_job(orchestrator)

        assert job.status is JobStatus.ERROR
        assert job.error == "renderer segfault"
        last = job.events[-1]
        assert isinstance(last, ErrorEvent)
        assert last.stage is ErrorStage.PIPELINE
        assert job.files == []

    @pytest.mark.asyncio
    async def test_cancelled_job_is_terminal(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script(), gate=asyncio.Event()), mock_kb_store)
        job = orchestrator.submit([text_file(text="x")])
        await asyncio.sleep(0)

        await _cancel(job)

        assert job.status is JobStatus.ERROR
        assert job.error == "Job cancelled"


# ======================================================================
# Subscription
# ======================================================================


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_replay_after_completion_then_closes(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)
        job = await _finished_job(orchestrator)

        events = [e async for e in orchestrator.subscribe(job.id)]

        assert events == job.events
        assert job.subscribers == set()

    @pytest.mark.asyncio
    async def test_live_subscriber_sees_every_event_once(self, mock_kb_store: MagicMock) -> None:
        gate = asyncio.Event()
        orchestrator = _orchestrator(_ScriptedPipeline(_script(), gate=gate, pause_after=2), mock_kb_store)
        job = orchestrator.submit([text_file(text="x")])
        while len(job.events) < 2:
            await asyncio.sleep(0)

        stream = orchestrator.subscribe(job.id)
        gate.set()
        received = [e async for e in stream]

        assert received == job.events
        assert len(received) == 5
        assert job.status is JobStatus.DONE
        assert job.subscribers == set()

    @pytest.mark.asyncio
    async def test_two_subscribers_get_identical_streams(self, mock_kb_store: MagicMock) -> None:
        gate = asyncio.Event()
        orchestrator = _orchestrator(_ScriptedPipeline(_script(), gate=gate), mock_kb_store)
        job = orchestrator.submit([text_file(text="x")])
        early = orchestrator.subscribe(job.id)
        while not job.events:
            await asyncio.sleep(0)
        late = orchestrator.subscribe(job.id)

        gate.set()
        first, second = await asyncio.gather(
            _drain(early),
            _drain(late),
        )

        assert first == second == job.events

    @pytest.mark.asyncio
    async def test_closing_stream_unregisters_subscriber(self, mock_kb_store: MagicMock) -> None:
        gate = asyncio.Event()
        orchestrator = _orchestrator(_ScriptedPipeline(_script(), gate=gate), mock_kb_store)
        job = orchestrator.submit([text_file(text="x")])
        while not job.events:
            await asyncio.sleep(0)

        stream = orchestrator.subscribe(job.id)
        await anext(stream)
        await stream.aclose()

        assert job.subscribers == set()
        await _cancel(job)

    def test_unknown_job(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline([]), mock_kb_store)
        with pytest.raises(JobNotFoundError):
            orchestrator.subscribe("nope")
        with pytest.raises(JobNotFoundError):
            orchestrator.get_snapshot("nope")


async def _drain(stream: AsyncIterator[IngestEvent]) -> list[IngestEvent]:
    return [e async for e in stream]


# ======================================================================
# Approval
# ======================================================================


def _item(candidate_id: str, image_url: str | None = None, question: str = "수정된 질문?") -> ApprovalItem:
    return ApprovalItem(id=candidate_id, question=question, answer="수정된 답변", category="배송", image_url=image_url)


class TestApprove:
    @pytest.mark.asyncio
    async def test_partial_failure_counts_only_saved(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script(candidate_count=5)), mock_kb_store)
        job = await _finished_job(orchestrator)

        saved = await orchestrator.approve(job.id, [_item("c0"), _item("c1", image_url="ftp://bad/x.png")])

        assert saved == 1
        mock_kb_store.create_entry.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_saves_edited_text(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store, created_by="reviewer-ui")
        job = await _finished_job(orchestrator)

        await orchestrator.approve(job.id, [_item("c1", question="편집한 질문?")])

        kwargs = mock_kb_store.create_entry.await_args.kwargs
        assert kwargs["question"] == "편집한 질문?"
        assert kwargs["answer"] == "수정된 답변"
        assert kwargs["created_by"] == "reviewer-ui"
        # c1's page image was never rendered, so it has no image.
        assert kwargs["image_url"] is None

    @pytest.mark.asyncio
    async def test_local_image_promoted_once_per_key(self, mock_kb_store: MagicMock) -> None:
        image_store = MagicMock(spec=IImageStore)
        image_store.upload = AsyncMock(side_effect=lambda data, key, mime: f"https://cdn.example.com/{key}")
        orchestrator = _orchestrator(_ScriptedPipeline(_script(candidate_count=3)), mock_kb_store, image_store)
        job = await _finished_job(orchestrator)

        saved = await orchestrator.approve(job.id, [_item("c0"), _item("c1", image_url="local://0-page-1")])

        assert saved == 2
        image_store.upload.assert_awaited_once_with(_PNG, f"kb-images/{job.id}/0-page-1.png", "image/png")
        urls = [call.kwargs["image_url"] for call in mock_kb_store.create_entry.await_args_list]
        assert urls == [f"https://cdn.example.com/kb-images/{job.id}/0-page-1.png"] * 2

    @pytest.mark.asyncio
    async def test_original_photo_keeps_its_format(self, mock_kb_store: MagicMock) -> None:
        jpeg = b"\xff\xd8\xff\xe0" + b"\x00" * 16
        image_store = MagicMock(spec=IImageStore)
        image_store.upload = AsyncMock(side_effect=lambda data, key, mime: f"https://cdn.example.com/{key}")
        orchestrator = _orchestrator(_ScriptedPipeline([]), mock_kb_store, image_store)
        photo = IngestFile(name="label.jpg", data=jpeg, mime_type="image/jpeg")
        job = await _finished_job(orchestrator, [photo])
        job.candidates.append(make_candidate(id="p0", image_url="local://0-original"))

        await orchestrator.approve(job.id, [_item("p0", image_url="local://0-original")])

        image_store.upload.assert_awaited_once_with(jpeg, f"kb-images/{job.id}/0-original.jpg", "image/jpeg")

    @pytest.mark.asyncio
    async def test_without_image_store_keeps_served_url(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)
        job = await _finished_job(orchestrator)

        await orchestrator.approve(job.id, [_item("c0")])

        assert mock_kb_store.create_entry.await_args.kwargs["image_url"] == (
            f"/ingest/jobs/{job.id}/images/0-page-1.png"
        )

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_served_url(self, mock_kb_store: MagicMock) -> None:
        image_store = MagicMock(spec=IImageStore)
        image_store.upload = AsyncMock(side_effect=RuntimeError("bucket gone"))
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store, image_store)
        job = await _finished_job(orchestrator)

        saved = await orchestrator.approve(job.id, [_item("c0")])

        assert saved == 1
        assert mock_kb_store.create_entry.await_args.kwargs["image_url"].endswith("/images/0-page-1.png")

    @pytest.mark.asyncio
    async def test_external_url_passes_through(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)
        job = await _finished_job(orchestrator)

        await orchestrator.approve(job.id, [_item("c0", image_url="https://shop.example.com/product.jpg")])

        assert mock_kb_store.create_entry.await_args.kwargs["image_url"] == "https://shop.example.com/product.jpg"

    @pytest.mark.asyncio
    async def test_other_jobs_relative_path_is_rejected(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)
        job = await _finished_job(orchestrator)

        saved = await orchestrator.approve(job.id, [_item("c0", image_url="/ingest/jobs/other/images/0-page-1.png")])

        assert saved == 0
        mock_kb_store.create_entry.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_candidate_skipped(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)
        job = await _finished_job(orchestrator)

        assert await orchestrator.approve(job.id, [_item("ghost"), _item("c0")]) == 1

    @pytest.mark.asyncio
    async def test_store_failure_skips_item(self, mock_kb_store: MagicMock) -> None:
        mock_kb_store.create_entry = AsyncMock(side_effect=[RuntimeError("disk full"), "kb-2"])
        orchestrator = _orchestrator(_ScriptedPipeline(_script()), mock_kb_store)
        job = await _finished_job(orchestrator)

        assert await orchestrator.approve(job.id, [_item("c0"), _item("c1")]) == 1

    @pytest.mark.asyncio
    async def test_running_job_cannot_be_approved(self, mock_kb_store: MagicMock) -> None:
        orchestrator = _orchestrator(_ScriptedPipeline(_script(), gate=asyncio.Event()), mock_kb_store)
        job = orchestrator.submit([text_file(text="x")])

        with pytest.raises(JobStateError):
            await orchestrator.approve(job.id, [_item("c0")])

        await _cancel(job)

    @pytest.mark.asyncio
    async def test_errored_job_can_be_approved(self, mock_kb_store: MagicMock) -> None:
        pipeline = _ScriptedPipeline(_script()[:3], error=RuntimeError("late crash"))
        orchestrator = _orchestrator(pipeline, mock_kb_store)
        job = await _finished_job(orchestrator)

        assert job.status is JobStatus.ERROR
        assert await orchestrator.approve(job.id, [_item("c0")]) == 1


# ======================================================================
# Maintenance
# ======================================================================


class TestGarbageCollection:
    @pytest.mark.asyncio
    async def test_run_gc_sweeps_until_cancelled(self, mock_kb_store: MagicMock) -> None:
        store = MagicMock(spec=MemoryJobStore)
        store.sweep.return_value = 0
        orchestrator = JobOrchestrator(pipeline=_ScriptedPipeline([]), job_store=store, kb_store=mock_kb_store)  # type: ignore[arg-type]

        task = asyncio.create_task(orchestrator.run_gc(0.01))
        while store.sweep.call_count < 2:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
