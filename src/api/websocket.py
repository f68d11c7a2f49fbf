"""WebSocket endpoint for live ingestion job events.

The same stream as ``GET /ingest/jobs/{id}/stream`` for clients that
prefer a socket over server-sent events: the full event history is
replayed first, then live events follow until the job is terminal, and
the server closes the socket.

# ─── HOW THE JOB SOCKET WORKS (Junior Developer Guide) ────────────────
#
#   Dashboard                            Backend (this file)
#   ─────────                            ──────────────────
#   ws = new WebSocket(url)   ──────→   websocket.accept()
#                                        orchestrator.subscribe(job_id)
#                             ←──────   replayed events (JSON)
#                             ←──────   live events (JSON)
#                             ←──────   close(1000) after the terminal event
#   ws.close()                ──────→   WebSocketDisconnect → unsubscribe
#
# Each message is one event serialized exactly like an SSE ``data:``
# line (``type`` discriminator, camelCase payload).
#
# Unknown or expired job ids get close code 4404 right after accept so
# the browser can tell "no such job" apart from a network drop.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import contextlib

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from src.models.ingest import event_to_json
from src.pipeline.job_orchestrator import JobOrchestrator
from src.utils.errors import JobNotFoundError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_CLOSE_NOT_FOUND = 4404


async def websocket_job_events(websocket: WebSocket, job_id: str) -> None:
    """Stream a job's events to the client over WebSocket.

    Parameters
    ----------
    websocket:
        The WebSocket connection managed by FastAPI / Starlette.
    job_id:
        The ingestion job to subscribe to.
    """
    orchestrator: JobOrchestrator = websocket.app.state.job_orchestrator

    await websocket.accept()
    try:
        events = orchestrator.subscribe(job_id)
    except JobNotFoundError as exc:
        _logger.info("websocket_job_not_found", job_id=job_id)
        await websocket.close(code=_CLOSE_NOT_FOUND, reason=exc.message)
        return

    _logger.info("websocket_connected", job_id=job_id)
    try:
        async for event in events:
            await websocket.send_text(event_to_json(event))
        # Terminal event delivered; the socket may already be gone.
        with contextlib.suppress(Exception):
            await websocket.close()
    except WebSocketDisconnect:
        _logger.info("websocket_disconnected", job_id=job_id)
    finally:
        # Closing the iterator unregisters its subscriber queue.
        await events.aclose()
        _logger.debug("websocket_listener_cleaned_up", job_id=job_id)
