"""Ingestion pipeline and job orchestration."""

from src.pipeline.ingest_pipeline import IngestPipeline
from src.pipeline.job_orchestrator import JobOrchestrator

__all__ = [
    "IngestPipeline",
    "JobOrchestrator",
]
