"""FastAPI routes for KB ingestion jobs and live answer routing.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP (Junior Developer Guide) ───────────────────────────
#
# Endpoint                              Method  Description
# ─────────────────────────────────────────────────────────────────────
# /ingest/upload                        POST    Upload files → start a job
# /ingest/jobs/{id}/stream              GET     SSE: replay + live events
# /ingest/jobs/{id}                     GET     Job snapshot
# /ingest/jobs/{id}/images/{key}.png    GET     Rendered page / original image
# /ingest/jobs/{id}/approve             POST    Save approved candidates to KB
# /api/v1/answer                        POST    Route one customer question
# /health                               GET     Health check + provider status
#
# The WebSocket twin of the SSE stream lives in websocket.py.
#
# DEPENDENCY INJECTION PATTERN:
# Each route function declares its dependencies as type-annotated params.
# FastAPI resolves these via Depends() which calls helper functions that
# read from app.state (populated at startup by main.py's build_components).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, File, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from src.api.schemas import (
    AnswerRequest,
    AnswerResponse,
    ApproveRequest,
    ApproveResponse,
    ErrorResponse,
    HealthResponse,
    UploadResponse,
)
from src.config.settings import Settings
from src.models.ingest import IMAGE_KEY_PATTERN, IngestEvent, IngestFile, event_to_json
from src.models.job import JobSnapshot
from src.pipeline.job_orchestrator import JobOrchestrator
from src.services.answer_router import AnswerRouter
from src.services.ingestion.text_extractor import guess_mime_type
from src.utils.errors import UploadValidationError
from src.utils.logging import get_logger
from src.utils.media import detect_media_type

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter()

# Read uploads in 64 KB pieces so an oversized file is rejected before it
# is fully buffered.
_UPLOAD_CHUNK_SIZE = 64 * 1024

_IMAGE_KEY = re.compile(IMAGE_KEY_PATTERN)

_GENERIC_CONTENT_TYPES = frozenset({"", "application/octet-stream"})

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> JobOrchestrator:
    """Return the job orchestrator from application state."""
    return request.app.state.job_orchestrator


def _get_answer_router(request: Request) -> AnswerRouter:
    """Return the answer router from application state."""
    return request.app.state.answer_router


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


OrchestratorDep = Annotated[JobOrchestrator, Depends(_get_orchestrator)]
AnswerRouterDep = Annotated[AnswerRouter, Depends(_get_answer_router)]
SettingsDep = Annotated[Settings, Depends(_get_settings)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _read_upload(upload: UploadFile, max_size: int) -> IngestFile:
    name = upload.filename or "unknown"
    chunks: list[bytes] = []
    total = 0
    while chunk := await upload.read(_UPLOAD_CHUNK_SIZE):
        total += len(chunk)
        if total > max_size:
            raise UploadValidationError(message=f"{name} exceeds the per-file limit of {max_size} bytes")
        chunks.append(chunk)

    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    mime_type = guess_mime_type(name) if content_type in _GENERIC_CONTENT_TYPES else content_type
    return IngestFile(name=name, data=b"".join(chunks), mime_type=mime_type)


async def _sse_frames(events: AsyncIterator[IngestEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield f"data: {event_to_json(event)}\n\n"


# ---------------------------------------------------------------------------
# Ingestion endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/ingest/upload",
    response_model=UploadResponse,
    responses=_ERROR_RESPONSES,
    summary="Upload documents and start an ingestion job",
)
async def upload_files(
    orchestrator: OrchestratorDep,
    settings: SettingsDep,
    files: Annotated[list[UploadFile] | None, File()] = None,
    bracket_files: Annotated[list[UploadFile] | None, File(alias="files[]")] = None,
) -> UploadResponse:
    """Accept files (field ``files`` or ``files[]``) and start processing."""
    uploads = [*(files or []), *(bracket_files or [])]
    if not uploads:
        raise UploadValidationError(message="No files uploaded")

    ingest_files = [await _read_upload(upload, settings.max_file_size) for upload in uploads]
    job = orchestrator.submit(ingest_files)
    return UploadResponse(job_id=job.id)


@router.get(
    "/ingest/jobs/{job_id}/stream",
    responses={404: {"model": ErrorResponse}},
    summary="Stream job events (replay, then live) as server-sent events",
)
async def stream_job(job_id: str, orchestrator: OrchestratorDep) -> StreamingResponse:
    events = orchestrator.subscribe(job_id)
    _logger.info("sse_subscribed", job_id=job_id)
    return StreamingResponse(_sse_frames(events), media_type="text/event-stream", headers=_SSE_HEADERS)


@router.get(
    "/ingest/jobs/{job_id}",
    response_model=JobSnapshot,
    responses={404: {"model": ErrorResponse}},
    summary="Current job status, candidates and event log",
)
async def get_job(job_id: str, orchestrator: OrchestratorDep) -> JobSnapshot:
    return orchestrator.get_snapshot(job_id)


@router.get(
    "/ingest/jobs/{job_id}/images/{key}.png",
    responses={404: {"model": ErrorResponse}},
    summary="Serve a rendered page or uploaded image held by the job",
)
async def get_job_image(job_id: str, key: str, orchestrator: OrchestratorDep) -> Response:
    if not _IMAGE_KEY.fullmatch(key):
        raise UploadValidationError(message=f"Malformed image key: {key}")
    data = orchestrator.get_image(job_id, key)
    return Response(
        content=data,
        media_type=detect_media_type(data),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.post(
    "/ingest/jobs/{job_id}/approve",
    response_model=ApproveResponse,
    responses=_ERROR_RESPONSES,
    summary="Save approved (optionally edited) candidates as KB entries",
)
async def approve_candidates(job_id: str, request: Request, orchestrator: OrchestratorDep) -> ApproveResponse:
    """Validate the whole body up front (400), then save item by item."""
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise UploadValidationError(message="Request body must be JSON") from exc
    if not isinstance(body, dict) or not isinstance(body.get("items"), list):
        raise UploadValidationError(message="Body must be an object with an 'items' array")
    try:
        approval = ApproveRequest.model_validate(body)
    except ValidationError as exc:
        raise UploadValidationError(message=f"Invalid approval item: {exc.errors()[0]['msg']}") from exc

    saved = await orchestrator.approve(job_id, approval.items)
    return ApproveResponse(saved=saved)


# ---------------------------------------------------------------------------
# Answer routing
# ---------------------------------------------------------------------------


@router.post(
    "/api/v1/answer",
    response_model=AnswerResponse,
    summary="Answer a customer question from the KB",
)
async def answer_question(body: AnswerRequest, answer_router: AnswerRouterDep) -> AnswerResponse:
    result = await answer_router.answer(body.question)
    return AnswerResponse(
        answer=result.answer,
        source=result.source,
        image_url=result.image_url,
        matched_kb_id=result.matched_kb_id,
        similarity_score=result.similarity_score,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability."""
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    orchestrator: JobOrchestrator | None = getattr(request.app.state, "job_orchestrator", None)

    critical_ok = providers.get("llm", False) and providers.get("embedding", False)
    return HealthResponse(
        status="healthy" if critical_ok else "degraded",
        version="0.1.0",
        providers=providers,
        active_jobs=orchestrator.active_count() if orchestrator is not None else 0,
    )
