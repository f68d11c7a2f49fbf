"""KB ingestion FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml``, configures
structured logging, and starts the periodic job GC sweep for the lifetime
of the app.

``build_components`` is shared with the CLI so both entry points assemble
exactly the same object graph.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.api.websocket import websocket_job_events
from src.config.loader import load_config
from src.config.settings import Settings
from src.interfaces.image_store import IImageStore
from src.interfaces.llm_provider import ILLMProvider
from src.pipeline.ingest_pipeline import IngestPipeline
from src.pipeline.job_orchestrator import JobOrchestrator
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.image_store.r2_image_store import R2ImageStore
from src.providers.job_store.memory_job_store import MemoryJobStore
from src.providers.kb_store.chromadb_kb_store import ChromaDBKBStore
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.services.answer_generator import AnswerGenerator
from src.services.answer_router import FALLBACK_MESSAGE, AnswerRouter
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.deduplicator import Deduplicator
from src.services.ingestion.document_renderer import DocumentRenderer
from src.services.ingestion.qa_generator import DEFAULT_CATEGORIES, QAGenerator
from src.services.ingestion.text_extractor import TextExtractor
from src.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_generation_llm(app_settings: Settings) -> ILLMProvider:
    """LLM for Q&A generation and image description.

    Priority: Anthropic -> OpenAI.
    """
    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings)
    return OpenAILLMProvider(settings=app_settings)


def _build_answer_llm(app_settings: Settings) -> ILLMProvider:
    """LLM for live answers, where latency matters most.

    Priority: OpenAI -> Anthropic.
    """
    if app_settings.openai_api_key or not app_settings.anthropic_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return AnthropicLLMProvider(settings=app_settings)


def _build_image_store(app_settings: Settings) -> IImageStore | None:
    if not app_settings.r2_configured():
        _logger.info("image_store_disabled", reason="r2_not_configured")
        return None
    return R2ImageStore(settings=app_settings)


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    app_config: dict[str, Any],
    *,
    upload_images_during_ingest: bool = False,
) -> dict[str, Any]:
    """Construct every provider and service from *app_settings*.

    Returns a flat dict of named components to be stored on ``app.state``.
    The web app promotes images to durable storage on approval, so its
    pipeline gets no image store; the CLI, which saves without a review
    step, passes ``upload_images_during_ingest=True``.
    """
    kb_config = app_config.get("kb", {})
    answer_config = app_config.get("answer", {})

    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)
    generation_llm = _build_generation_llm(app_settings)
    answer_llm = _build_answer_llm(app_settings)
    image_store = _build_image_store(app_settings)

    kb_store = ChromaDBKBStore(
        embedding_provider=embedding_provider,
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
    )
    job_store = MemoryJobStore(
        max_active=app_settings.max_concurrent_jobs,
        ttl=app_settings.job_ttl_seconds,
    )

    qa_generator = QAGenerator(
        llm=generation_llm,
        categories=kb_config.get("categories") or DEFAULT_CATEGORIES,
        default_category=kb_config.get("default_category", "기타"),
    )
    deduplicator = Deduplicator(
        embedding_provider=embedding_provider,
        kb_store=kb_store,
        threshold=app_settings.dedup_threshold,
    )
    pipeline = IngestPipeline(
        text_extractor=TextExtractor(vision_llm=generation_llm),
        renderer=DocumentRenderer(
            target_width=app_settings.render_target_width,
            max_pages=app_settings.render_max_pages,
        ),
        chunker=TextChunker(
            max_length=app_settings.chunk_max_length,
            overlap=app_settings.chunk_overlap,
            min_length=app_settings.chunk_min_length,
        ),
        qa_generator=qa_generator,
        deduplicator=deduplicator,
        image_store=image_store if upload_images_during_ingest else None,
    )
    job_orchestrator = JobOrchestrator(
        pipeline=pipeline,
        job_store=job_store,
        kb_store=kb_store,
        image_store=image_store,
        public_base_url=app_settings.public_base_url,
        max_file_size=app_settings.max_file_size,
        max_total_size=app_settings.max_total_size,
        created_by=kb_config.get("created_by", "kb-ingest"),
    )
    answer_router = AnswerRouter(
        embedding_provider=embedding_provider,
        kb_store=kb_store,
        generator=AnswerGenerator(llm=answer_llm),
        match_threshold=app_settings.match_threshold,
        search_threshold=app_settings.search_threshold,
        max_results=app_settings.search_max_results,
        retry_max_results=app_settings.context_retry_max_results,
        image_overlap_floor=app_settings.image_overlap_floor,
        timeout_ms=app_settings.answer_timeout_ms,
        fallback_message=answer_config.get("fallback_message", FALLBACK_MESSAGE),
    )

    provider_registry: dict[str, bool] = {
        "llm": generation_llm.is_available(),
        "answer_llm": answer_llm.is_available(),
        "embedding": embedding_provider.is_available(),
        "kb_store": True,
        "image_store": image_store is not None,
    }

    return {
        "settings": app_settings,
        "config": app_config,
        "embedding_provider": embedding_provider,
        "generation_llm": generation_llm,
        "answer_llm": answer_llm,
        "kb_store": kb_store,
        "image_store": image_store,
        "job_store": job_store,
        "pipeline": pipeline,
        "job_orchestrator": job_orchestrator,
        "answer_router": answer_router,
        "provider_registry": provider_registry,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build all components on startup and run the job GC until shutdown."""
    components = build_components(settings, config)

    for key, value in components.items():
        setattr(application.state, key, value)

    orchestrator: JobOrchestrator = components["job_orchestrator"]
    gc_task = asyncio.create_task(orchestrator.run_gc(settings.job_gc_interval_seconds))

    _logger.info(
        "app_startup",
        version="0.1.0",
        environment=settings.app_env,
        generation_llm=components["generation_llm"].get_provider_name(),
        answer_llm=components["answer_llm"].get_provider_name(),
        providers=components["provider_registry"],
    )

    yield

    gc_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await gc_task
    _logger.info("app_shutdown", message="job GC stopped")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="KB Ingest API",
        version="0.1.0",
        description=(
            "Turn uploaded manuals, product pages and photos into reviewed "
            "FAQ entries for a support chatbot, and answer customer questions "
            "from the resulting knowledge base."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    # -- WebSocket --
    @application.websocket("/ws/ingest/{job_id}")
    async def ws_job_events(websocket: WebSocket, job_id: str) -> None:
        await websocket_job_events(websocket, job_id)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
