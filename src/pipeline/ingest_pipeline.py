"""Document-to-Q&A ingestion pipeline.

Turns an ordered list of uploaded files into Q&A candidates, reporting
every step as a typed :data:`~src.models.ingest.IngestEvent`.

ARCHITECTURE NOTE (for junior developers):
    The pipeline is a producer writing to a channel (an ``asyncio.Queue``).
    :meth:`IngestPipeline.run` does the work and puts events on the queue;
    whoever owns the queue decides what to do with them (the job
    orchestrator logs and broadcasts them, the CLI prints them).
    :meth:`IngestPipeline.stream` wires the two ends together as an async
    iterator.

    Files are processed strictly one after another, and inside a file every
    stage waits for the previous one, so the event log has a single total
    order.  The only suspension points are provider calls (LLM, embeddings,
    KB search, image upload) and rendering in a worker thread.

    Each file takes one of two branches:

    PAGE BRANCH (PDF)
        file_start → text_extracted → pages_rendered → [r2 uploads]
        → qa_generating(0 of 1) → dedup_checking → qa_generated → file_done

    CHUNK BRANCH (text, HTML, images)
        file_start → text_extracted → [r2 upload of an image] → chunks_created
        → for each chunk: qa_generating → dedup_checking → qa_generated
        → file_done

    After the last file: complete.

    Failures are scoped to the smallest unit that failed and reported as an
    ``error`` event; the pipeline moves on to the next unit.  Nothing is
    retried.  Only an exception escaping this orchestration code itself is
    fatal to the run.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import AsyncIterator
from pathlib import PurePath

from src.interfaces.image_store import IImageStore
from src.models.ingest import (
    ChunksCreatedEvent,
    CompleteEvent,
    DedupCheckingEvent,
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
    local_ref,
    original_image_key,
    page_image_key,
)
from src.models.kb import QAPair
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.deduplicator import Deduplicator
from src.services.ingestion.document_renderer import DocumentRenderer, RenderedPage
from src.services.ingestion.qa_generator import QAGenerator
from src.services.ingestion.text_extractor import TextExtractor, is_image, is_page_document
from src.utils.errors import PipelineError
from src.utils.logging import get_logger

EventChannel = asyncio.Queue["IngestEvent | None"]

DURABLE_KEY_PREFIX = "kb-images"


def durable_image_key(run_id: str, key: str, extension: str = ".png") -> str:
    """Object-store key for an image promoted out of job memory."""
    return f"{DURABLE_KEY_PREFIX}/{run_id}/{key}{extension}"


class IngestPipeline:
    """Runs extraction, generation and dedup over a batch of files.

    Parameters
    ----------
    text_extractor, renderer, chunker, qa_generator, deduplicator:
        Stage implementations.
    image_store:
        When given, page images and uploaded photos are uploaded during the
        run and candidates carry durable URLs.  When ``None`` candidates
        carry ``local://`` placeholders and promotion happens on approval.
    """

    def __init__(
        self,
        text_extractor: TextExtractor,
        renderer: DocumentRenderer,
        chunker: TextChunker,
        qa_generator: QAGenerator,
        deduplicator: Deduplicator,
        image_store: IImageStore | None = None,
    ) -> None:
        self._extractor = text_extractor
        self._renderer = renderer
        self._chunker = chunker
        self._generator = qa_generator
        self._deduplicator = deduplicator
        self._image_store = image_store
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        files: list[IngestFile],
        channel: EventChannel,
        run_id: str | None = None,
    ) -> list[QACandidate]:
        """Process *files* in order, putting every event on *channel*.

        Returns the accumulated candidates after ``complete`` is emitted.
        Does not put the end-of-stream sentinel; the channel owner does.

        Raises
        ------
        PipelineError
            A failure outside the per-unit error handling; wraps the cause.
        """
        run_id = run_id or uuid.uuid4().hex
        candidates: list[QACandidate] = []

        for index, file in enumerate(files):
            await channel.put(FileStartEvent(file_name=file.name, mime_type=file.mime_type))
            try:
                if is_page_document(file.mime_type):
                    produced = await self._process_pages(index, file, channel, run_id)
                else:
                    produced = await self._process_chunks(index, file, channel, run_id)
            except Exception as exc:
                # Stage failures are already events; anything else ends the run.
                raise PipelineError(message=f"{file.name}: {exc}") from exc
            candidates.extend(produced)

        duplicates = sum(1 for c in candidates if c.is_duplicate)
        await channel.put(
            CompleteEvent(
                total_candidates=len(candidates),
                duplicates=duplicates,
                unique=len(candidates) - duplicates,
            )
        )
        self._logger.info(
            "ingest_run_complete",
            run_id=run_id,
            files=len(files),
            candidates=len(candidates),
            duplicates=duplicates,
        )
        return candidates

    async def stream(self, files: list[IngestFile], run_id: str | None = None) -> AsyncIterator[IngestEvent]:
        """Run the pipeline in a producer task and yield its events.

        An exception that is fatal to the run is re-raised after the events
        emitted before it have been yielded.
        """
        channel: EventChannel = asyncio.Queue()

        async def _produce() -> list[QACandidate]:
            try:
                return await self.run(files, channel, run_id)
            finally:
                channel.put_nowait(None)

        producer = asyncio.create_task(_produce())
        try:
            while (event := await channel.get()) is not None:
                yield event
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

    # ------------------------------------------------------------------
    # Page branch
    # ------------------------------------------------------------------

    async def _process_pages(
        self,
        file_index: int,
        file: IngestFile,
        channel: EventChannel,
        run_id: str,
    ) -> list[QACandidate]:
        text = await self._extract(file, channel)
        if text is None:
            return []

        try:
            pages = await self._renderer.render(file.data, file.name)
        except Exception as exc:
            self._logger.warning("page_rendering_failed", file_name=file.name, error=str(exc))
            await channel.put(
                ErrorEvent(stage=ErrorStage.PAGE_RENDERING, message=str(exc), file_name=file.name)
            )
            return []

        await channel.put(
            PagesRenderedEvent(
                file_name=file.name,
                page_count=len(pages),
                page_images={page_image_key(file_index, p.page_number): p.image for p in pages},
            )
        )

        durable_urls = await self._upload_pages(file_index, file, pages, channel, run_id)

        await channel.put(QAGeneratingEvent(file_name=file.name, chunk_index=0, total_chunks=1))
        try:
            pairs = await self._generator.generate_from_pages(pages)
        except Exception as exc:
            self._logger.warning("qa_generation_failed", file_name=file.name, error=str(exc))
            await channel.put(
                ErrorEvent(
                    stage=ErrorStage.QA_GENERATION,
                    message=str(exc),
                    file_name=file.name,
                    chunk_index=0,
                )
            )
            await channel.put(FileDoneEvent(file_name=file.name, candidate_count=0))
            return []

        page_numbers = {p.page_number for p in pages}
        candidates = []
        for pair in pairs:
            page = pair.page_number if pair.page_number in page_numbers else pages[0].page_number
            image_url = durable_urls.get(page) or local_ref(page_image_key(file_index, page))
            candidates.append(self._candidate(pair, file, chunk_index=0, page_number=page, image_url=image_url))

        candidates = await self._dedup(candidates, file, chunk_index=0, channel=channel)
        await channel.put(
            QAGeneratedEvent(file_name=file.name, chunk_index=0, candidates=candidates, count=len(candidates))
        )
        await channel.put(FileDoneEvent(file_name=file.name, candidate_count=len(candidates)))
        return candidates

    async def _upload_pages(
        self,
        file_index: int,
        file: IngestFile,
        pages: list[RenderedPage],
        channel: EventChannel,
        run_id: str,
    ) -> dict[int, str]:
        if self._image_store is None:
            return {}

        urls: dict[int, str] = {}
        for page in pages:
            key = durable_image_key(run_id, page_image_key(file_index, page.page_number))
            try:
                urls[page.page_number] = await self._image_store.upload(page.image, key, "image/png")
            except Exception as exc:
                self._logger.warning(
                    "page_upload_failed", file_name=file.name, page_number=page.page_number, error=str(exc)
                )
                await channel.put(
                    ErrorEvent(
                        stage=ErrorStage.R2_UPLOAD,
                        message=str(exc),
                        file_name=file.name,
                        page_number=page.page_number,
                    )
                )
        return urls

    # ------------------------------------------------------------------
    # Chunk branch
    # ------------------------------------------------------------------

    async def _process_chunks(
        self,
        file_index: int,
        file: IngestFile,
        channel: EventChannel,
        run_id: str,
    ) -> list[QACandidate]:
        text = await self._extract(file, channel)
        if text is None:
            return []

        image_url = await self._original_image_url(file_index, file, channel, run_id)

        chunks = self._chunker.chunk(text)
        await channel.put(ChunksCreatedEvent(file_name=file.name, chunk_count=len(chunks)))

        file_candidates: list[QACandidate] = []
        for chunk in chunks:
            await channel.put(
                QAGeneratingEvent(file_name=file.name, chunk_index=chunk.index, total_chunks=len(chunks))
            )
            try:
                pairs = await self._generator.generate_from_text(chunk.text, chunk.start_page)
            except Exception as exc:
                self._logger.warning(
                    "qa_generation_failed", file_name=file.name, chunk_index=chunk.index, error=str(exc)
                )
                await channel.put(
                    ErrorEvent(
                        stage=ErrorStage.QA_GENERATION,
                        message=str(exc),
                        file_name=file.name,
                        chunk_index=chunk.index,
                    )
                )
                continue

            candidates = [
                self._candidate(
                    pair,
                    file,
                    chunk_index=chunk.index,
                    page_number=pair.page_number or chunk.start_page,
                    image_url=image_url,
                )
                for pair in pairs
            ]
            candidates = await self._dedup(candidates, file, chunk_index=chunk.index, channel=channel)
            await channel.put(
                QAGeneratedEvent(
                    file_name=file.name,
                    chunk_index=chunk.index,
                    candidates=candidates,
                    count=len(candidates),
                )
            )
            file_candidates.extend(candidates)

        await channel.put(FileDoneEvent(file_name=file.name, candidate_count=len(file_candidates)))
        return file_candidates

    async def _original_image_url(
        self,
        file_index: int,
        file: IngestFile,
        channel: EventChannel,
        run_id: str,
    ) -> str | None:
        if not is_image(file.mime_type):
            return None

        key = original_image_key(file_index)
        if self._image_store is None:
            return local_ref(key)

        extension = PurePath(file.name).suffix.lower() or ".png"
        try:
            return await self._image_store.upload(file.data, durable_image_key(run_id, key, extension), file.mime_type)
        except Exception as exc:
            self._logger.warning("original_upload_failed", file_name=file.name, error=str(exc))
            await channel.put(ErrorEvent(stage=ErrorStage.R2_UPLOAD, message=str(exc), file_name=file.name))
            return local_ref(key)

    # ------------------------------------------------------------------
    # Shared stages
    # ------------------------------------------------------------------

    async def _extract(self, file: IngestFile, channel: EventChannel) -> str | None:
        try:
            text = await self._extractor.extract(file)
        except Exception as exc:
            self._logger.warning("text_extraction_failed", file_name=file.name, error=str(exc))
            await channel.put(
                ErrorEvent(stage=ErrorStage.TEXT_EXTRACTION, message=str(exc), file_name=file.name)
            )
            return None
        await channel.put(TextExtractedEvent(file_name=file.name, text_length=len(text)))
        return text

    async def _dedup(
        self,
        candidates: list[QACandidate],
        file: IngestFile,
        chunk_index: int,
        channel: EventChannel,
    ) -> list[QACandidate]:
        await channel.put(DedupCheckingEvent(file_name=file.name, candidate_count=len(candidates)))
        checked: list[QACandidate] = []
        for candidate in candidates:
            try:
                checked.append(await self._deduplicator.check(candidate))
            except Exception as exc:
                self._logger.warning("dedup_check_failed", candidate_id=candidate.id, error=str(exc))
                await channel.put(
                    ErrorEvent(
                        stage=ErrorStage.DEDUP_CHECK,
                        message=str(exc),
                        file_name=file.name,
                        chunk_index=chunk_index,
                        question=candidate.question,
                    )
                )
                checked.append(candidate)
        return checked

    @staticmethod
    def _candidate(
        pair: QAPair,
        file: IngestFile,
        chunk_index: int,
        page_number: int | None,
        image_url: str | None,
    ) -> QACandidate:
        return QACandidate(
            id=str(uuid.uuid4()),
            question=pair.question,
            answer=pair.answer,
            category=pair.category,
            image_url=image_url,
            file_name=file.name,
            chunk_index=chunk_index,
            page_number=page_number,
        )
