"""Pydantic request/response schemas for the KB ingestion API.

Defines the public contract for the REST endpoints: upload, approval,
answer routing and health.  Job snapshots and events are served straight
from :mod:`src.models` since they already serialize with camelCase keys.

Request and response bodies use camelCase on the wire (``jobId``,
``imageUrl``) because the dashboard is a TypeScript app; Python code uses
snake_case attribute names through ``alias_generator=to_camel``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.ingest import ApprovalItem
from src.models.kb import ResponseSource


class _CamelSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadResponse(_CamelSchema):
    """Returned after files are accepted and the job has started."""

    job_id: str


class ApproveRequest(_CamelSchema):
    """Reviewer-approved candidates, possibly edited."""

    items: list[ApprovalItem]


class ApproveResponse(_CamelSchema):
    saved: int = Field(ge=0, description="How many candidates were persisted as KB entries.")


class AnswerRequest(_CamelSchema):
    question: str = Field(min_length=1, max_length=1000)


class AnswerResponse(_CamelSchema):
    """Routed answer for one customer question."""

    answer: str
    source: ResponseSource
    image_url: str | None = None
    matched_kb_id: str | None = None
    similarity_score: float | None = None


class HealthResponse(_CamelSchema):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
    active_jobs: int = 0


class ErrorResponse(BaseModel):
    """Standard error envelope returned by the error-handling middleware."""

    error: str
    detail: str | None = None
