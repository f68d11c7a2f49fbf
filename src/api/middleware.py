"""HTTP middleware: CORS, per-request logging and error translation.

# ─── MIDDLEWARE STACK (Junior Developer Guide) ─────────────────────────
#
# Starlette runs middleware last-added-first.  main.py adds:
#
#     ErrorHandlingMiddleware     (added first, sits next to the routes)
#     RequestLoggingMiddleware    (added second, wraps everything)
#     CORSMiddleware              (via configure_cors, outermost)
#
#   request  ─► CORS ─► RequestLogging ─► ErrorHandling ─► route
#   response ◄─ CORS ◄─ RequestLogging ◄─ ErrorHandling ◄─ route
#
# RequestLogging therefore logs the status the client actually receives,
# including the 4xx/5xx produced by ErrorHandling.
#
# Every request gets an ``X-Request-ID`` (the client's, if it sent one).
# The id is bound into structlog's contextvars for the duration of the
# request, so any log line a service writes while handling it carries
# ``request_id`` automatically.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import KBChatbotError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by load balancers; logged at debug so it does not drown real traffic.
_QUIET_PATHS = frozenset({"/health"})


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Allow the review dashboard (served from another origin) to call the API.

    With no *allowed_origins* every origin is accepted, which is what local
    development wants.  Deployments should pass the dashboard's origin.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http_request`` log line per request, tagged with a request id."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            path = request.url.path
            log = _logger.debug if path in _QUIET_PATHS else _logger.info
            log(
                "http_request",
                method=request.method,
                path=path,
                status=status,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id")


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Translate :class:`KBChatbotError` into an :class:`ErrorResponse`.

    The HTTP status comes from the exception class: 400 for a bad upload
    or approval body, 404 for an unknown or expired job, 409 when the job
    is in the wrong state, 429 at the concurrency ceiling, 500 for any
    provider or pipeline failure.  Client errors are logged as warnings,
    server errors as errors.

    The body carries the exception class name and its message only.
    Anything that is not a :class:`KBChatbotError` is left to Starlette's
    own 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except KBChatbotError as exc:
            server_side = exc.status_code >= 500
            log = _logger.error if server_side else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=exc.status_code,
                path=request.url.path,
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=exc.status_code, content=body.model_dump())
