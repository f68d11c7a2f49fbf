"""Job registry adapters (IJobStore implementations)."""

from src.providers.job_store.memory_job_store import MemoryJobStore

__all__ = ["MemoryJobStore"]
