"""KB ingestion API layer: routes, schemas, WebSocket and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    AnswerRequest,
    AnswerResponse,
    ApproveRequest,
    ApproveResponse,
    ErrorResponse,
    HealthResponse,
    UploadResponse,
)
from src.api.websocket import websocket_job_events

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "websocket_job_events",
    "AnswerRequest",
    "AnswerResponse",
    "ApproveRequest",
    "ApproveResponse",
    "ErrorResponse",
    "HealthResponse",
    "UploadResponse",
]
