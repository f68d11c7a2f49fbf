"""In-memory job store backed by ``cachetools.TTLCache``.

The TTL cache gives retention for free: an entry is invisible once
``ttl`` seconds have passed since it was inserted, whatever the job's
status.  :meth:`MemoryJobStore.sweep` relies on ``TTLCache.expire()``
returning the expired pairs (cachetools 5.4 and later) so
expired jobs also release their buffers, not just disappear from lookups.

All methods are synchronous and never await, so on a single event loop a
check-then-insert in :meth:`reserve` is atomic with respect to other
requests.  ``maxsize`` is a hard safety bound well above the concurrency
ceiling; finished jobs stay readable until their TTL runs out.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog
from cachetools import TTLCache

from src.interfaces.job_store import IJobStore
from src.models.job import Job, JobStatus
from src.utils.errors import JobCapacityError

logger = structlog.get_logger(logger_name=__name__)

_ACTIVE_STATUSES = frozenset({JobStatus.UPLOADING, JobStatus.PROCESSING})


class MemoryJobStore(IJobStore):
    """Job registry with TTL retention and an active-job ceiling.

    Parameters
    ----------
    max_active:
        How many jobs may be uploading or processing at the same time.
    ttl:
        Seconds a job is retained after creation.
    max_size:
        Upper bound on retained jobs.
    timer:
        Monotonic clock; tests inject a fake to move time forward.
    """

    def __init__(
        self,
        max_active: int = 3,
        ttl: float = 3600,
        max_size: int = 1000,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_active = max_active
        self._timer = timer
        self._jobs: TTLCache[str, Job] = TTLCache(maxsize=max_size, ttl=ttl, timer=timer)

    # ------------------------------------------------------------------
    # IJobStore implementation
    # ------------------------------------------------------------------

    def reserve(self, job: Job) -> None:
        self.sweep()
        active = self.active_count()
        if active >= self._max_active:
            logger.warning("job_capacity_reached", active=active, max_active=self._max_active)
            raise JobCapacityError(
                message=(
                    f"{active} ingestion jobs are already running "
                    f"(limit {self._max_active}); wait for one to finish"
                )
            )
        job.created_at = self._timer()
        self._jobs[job.id] = job
        logger.info("job_registered", job_id=job.id, active=active + 1)

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def active_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status in _ACTIVE_STATUSES)

    def sweep(self) -> int:
        expired = self._jobs.expire()
        for job_id, job in expired:
            # A still-running task of an expired job has nobody left to report to.
            if job.task is not None and not job.task.done():
                job.task.cancel()
            job.image_buffers.clear()
            job.files = []
            logger.info("job_expired", job_id=job_id, status=job.status.value)
        return len(expired)

    def __len__(self) -> int:
        return len(self._jobs)
