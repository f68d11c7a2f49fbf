"""Abstract base class for the ingestion job registry.

The job store owns two invariants so that route handlers and the
orchestrator never re-implement them:

1. **Retention** - a job is dropped once its TTL (measured from creation)
   elapses, whatever its status.
2. **Concurrency ceiling** - at most ``max_active`` jobs may be uploading
   or processing at once; :meth:`reserve` rejects the rest immediately.

Swapping the in-memory implementation for a persistent one must not
change orchestrator logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.job import Job


# Concrete implementations: MemoryJobStore
# Located in: src/providers/job_store/
class IJobStore(ABC):
    """Contract for job registration, lookup and expiry."""

    @abstractmethod
    def reserve(self, job: Job) -> None:
        """Register *job* if a processing slot is free.

        Check-and-insert happens without yielding to the event loop, so two
        concurrent submissions cannot both take the last slot.

        Raises
        ------
        src.utils.errors.JobCapacityError
            If ``active_count()`` already equals the ceiling.
        """

    @abstractmethod
    def get(self, job_id: str) -> Job | None:
        """Return the job, or ``None`` if unknown or expired."""

    @abstractmethod
    def active_count(self) -> int:
        """Number of jobs currently uploading or processing."""

    @abstractmethod
    def sweep(self) -> int:
        """Drop every job past its TTL; return how many were removed."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of retained jobs."""
