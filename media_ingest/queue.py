"""Job queue contract: claim, lease, retry and dead-letter thumbnail jobs."""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID, uuid4

from media_ingest.config import JobQueueConfig
from media_ingest.models import AssetStatus, Job, JobStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """
    High-level API over the job store.

    ``job_store`` and ``asset_store`` may be the Postgres stores from
    ``media_ingest.store`` or the in-memory ones from
    ``media_ingest.memory_store``.
    """

    def __init__(
        self,
        config: JobQueueConfig,
        job_store,
        asset_store,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.store = job_store
        self.asset_store = asset_store
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.rng = rng or random.Random()

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(seconds=self.config.lease_duration_seconds)

    async def enqueue_if_absent(self, asset_id: UUID) -> bool:
        """
        Insert a job for ``asset_id`` runnable now, unless one is already pending.

        Returns True when a new job was created.
        """
        created = await self.store.enqueue_if_absent(uuid4(), asset_id, self.clock())
        if created:
            self.logger.info(f"Enqueued thumbnail job for asset {asset_id}")
        return created

    async def claim_next(
        self, worker_id: str, lease_duration: Optional[timedelta] = None
    ) -> Optional[Job]:
        """
        Claim the oldest runnable job for ``worker_id``.

        Jobs whose previous holders kept crashing until the attempt budget ran
        out are dead-lettered here instead of being handed out again.
        """
        lease_duration = lease_duration or self.lease_duration

        while True:
            now = self.clock()
            job = await self.store.claim_next(worker_id, now, now + lease_duration)
            if job is None:
                return None

            if job.attempt > self.config.max_attempts:
                self.logger.warning(
                    f"Job {job.id} lease expired after {job.attempt - 1} attempts, "
                    f"dead-lettering"
                )
                await self._dead_letter(
                    job,
                    {
                        "error": "Lease expired after max attempts",
                        "type": "LeaseExpiredError",
                        "reason": "LeaseExpired",
                        "timestamp": now.isoformat(),
                    },
                )
                continue

            self.logger.info(
                f"Worker {worker_id} claimed job {job.id} for asset {job.asset_id} "
                f"(attempt {job.attempt}/{self.config.max_attempts})"
            )
            return job

    async def renew_lease(
        self, job: Job, lease_duration: Optional[timedelta] = None
    ) -> bool:
        """
        Extend the lease held on ``job``.

        Returns False when the lease was lost to a reclaim.
        """
        lease_expires_at = self.clock() + (lease_duration or self.lease_duration)
        renewed = await self.store.renew_lease(
            job.id, job.lease_owner, job.attempt, lease_expires_at
        )
        if renewed:
            job.lease_expires_at = lease_expires_at
        else:
            self.logger.warning(f"Worker {job.lease_owner} lost the lease on job {job.id}")
        return renewed

    async def release_lease(self, job: Job) -> bool:
        """Give the lease back without counting it as a failure."""
        released = await self.store.release_lease(job.id, job.lease_owner, job.attempt)
        if released:
            self.logger.info(f"Worker {job.lease_owner} released job {job.id}")
        return released

    async def complete_job(self, job: Job) -> bool:
        """Delete a job after its asset reached ``ready``."""
        completed = await self.store.delete_job(job.id, job.lease_owner, job.attempt)
        if completed:
            self.logger.info(f"Job {job.id} completed")
        else:
            self.logger.warning(f"Job {job.id} could not be completed, lease no longer held")
        return completed

    async def fail_job(
        self,
        job: Job,
        error: Union[BaseException, str],
        retryable: bool,
        reason: Optional[str] = None,
    ) -> Optional[datetime]:
        """
        Record a failed attempt.

        Retryable failures below the attempt budget are rescheduled after
        ``backoff(attempt)``; the new ``next_run_at`` is returned. Anything
        else dead-letters the job, marks the asset failed and returns None.
        """
        now = self.clock()
        error_info = _error_info(error, reason, now)

        if retryable and job.attempt < self.config.max_attempts:
            delay = self.backoff(job.attempt)
            next_run_at = now + timedelta(seconds=delay)
            rescheduled = await self.store.reschedule_job(
                job.id, job.lease_owner, job.attempt, next_run_at, error_info
            )
            if not rescheduled:
                self.logger.warning(
                    f"Job {job.id} could not be rescheduled, lease no longer held"
                )
                return None
            await self.asset_store.transition_status(
                job.asset_id, [AssetStatus.PROCESSING], AssetStatus.QUEUED
            )
            self.logger.warning(
                f"Job {job.id} will retry (attempt {job.attempt}/"
                f"{self.config.max_attempts}) after {delay:.1f}s: {error_info['error']}"
            )
            return next_run_at

        await self._dead_letter(job, error_info)
        return None

    def backoff(self, attempt: int) -> float:
        """Delay in seconds before the retry that follows ``attempt``."""
        return calculate_backoff_with_jitter(
            attempt,
            self.config.backoff_base_seconds,
            self.config.backoff_cap_seconds,
            self.rng,
        )

    async def list_dead_letters(self, limit: int = 50) -> List[Job]:
        """Dead-lettered jobs, oldest first."""
        return await self.store.list_jobs(status=JobStatus.DEAD, limit=limit)

    async def _dead_letter(self, job: Job, error_info: Dict[str, Any]) -> None:
        dead = await self.store.dead_letter_job(
            job.id, job.lease_owner, job.attempt, error_info
        )
        if not dead:
            self.logger.warning(
                f"Job {job.id} could not be dead-lettered, lease no longer held"
            )
            return

        reason = error_info.get("reason") or error_info.get("type")
        await self.asset_store.mark_failed(job.asset_id, f"{reason}: {error_info['error']}")
        self.logger.error(
            f"Job {job.id} dead-lettered after attempt {job.attempt}; "
            f"asset {job.asset_id} failed ({reason})"
        )


def calculate_backoff(attempt: int, base_seconds: float, cap_seconds: float) -> float:
    """
    Exponential part of the retry delay: ``min(cap, base * 2^attempt)``.

    Args:
        attempt: Number of claims so far (1 after the first claim)
        base_seconds: Base delay
        cap_seconds: Upper bound on the exponential part

    Returns:
        Delay in seconds
    """
    return min(cap_seconds, base_seconds * (2 ** attempt))


def calculate_backoff_with_jitter(
    attempt: int,
    base_seconds: float,
    cap_seconds: float,
    rng: Optional[random.Random] = None,
) -> float:
    """Exponential delay plus ``uniform(0, base)`` jitter to spread out retries."""
    rng = rng or random
    return calculate_backoff(attempt, base_seconds, cap_seconds) + rng.uniform(
        0, base_seconds
    )


def _error_info(
    error: Union[BaseException, str], reason: Optional[str], now: datetime
) -> Dict[str, Any]:
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        error_type = type(error).__name__
    else:
        message = error
        error_type = reason or "Error"
    return {
        "error": message,
        "type": error_type,
        "reason": reason or error_type,
        "timestamp": now.isoformat(),
    }
