"""
In-memory implementations of the asset and job stores.

These mirror ``AssetStore`` and ``JobStore`` method for method and are meant
for local development and tests. Every read-modify-write runs under a single
``asyncio.Lock``, which gives the same per-row atomicity the Postgres
conditional updates provide.
"""

import asyncio
import copy
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from media_ingest.errors import JobNotFoundError, UnknownAssetError
from media_ingest.models import Asset, AssetStatus, Job, JobStatus, Variant


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryAssetStore:
    """Asset records kept in a dictionary keyed by asset id."""

    def __init__(self):
        self.assets: Dict[UUID, Asset] = {}
        self._lock = asyncio.Lock()

    async def insert_asset(
        self,
        id: UUID,
        owner_id: str,
        original_key: str,
        content_type: str,
    ) -> Asset:
        async with self._lock:
            if id in self.assets:
                raise ValueError(f"Asset {id} already exists")
            if any(a.original_key == original_key for a in self.assets.values()):
                raise ValueError(f"Original key {original_key} already in use")
            now = _utcnow()
            asset = Asset(
                id=id,
                owner_id=owner_id,
                original_key=original_key,
                content_type=content_type,
                status=AssetStatus.PENDING_UPLOAD,
                created_at=now,
                updated_at=now,
            )
            self.assets[id] = asset
            return copy.deepcopy(asset)

    async def get_asset(self, asset_id: UUID) -> Asset:
        async with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None:
                raise UnknownAssetError(str(asset_id))
            return copy.deepcopy(asset)

    async def transition_status(
        self,
        asset_id: UUID,
        from_statuses: Iterable[AssetStatus],
        to_status: AssetStatus,
    ) -> bool:
        async with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None or asset.status not in set(from_statuses):
                return False
            asset.status = to_status
            asset.updated_at = _utcnow()
            return True

    async def mark_ready(self, asset_id: UUID, variants: Dict[str, Variant]) -> bool:
        async with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None or asset.status != AssetStatus.PROCESSING:
                return False
            asset.variants.update(copy.deepcopy(variants))
            asset.status = AssetStatus.READY
            asset.last_error = None
            asset.updated_at = _utcnow()
            return True

    async def mark_failed(self, asset_id: UUID, error: str) -> bool:
        async with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None or asset.status not in (
                AssetStatus.QUEUED,
                AssetStatus.PROCESSING,
            ):
                return False
            asset.status = AssetStatus.FAILED
            asset.last_error = error
            asset.updated_at = _utcnow()
            return True


class InMemoryJobStore:
    """Thumbnail jobs kept in a dictionary keyed by job id."""

    def __init__(self):
        self.jobs: Dict[UUID, Job] = {}
        self._lock = asyncio.Lock()
        # Insertion order breaks ties between equal next_run_at values
        self._sequence = itertools.count()
        self._order: Dict[UUID, int] = {}

    async def enqueue_if_absent(
        self, id: UUID, asset_id: UUID, next_run_at: datetime
    ) -> bool:
        async with self._lock:
            for job in self.jobs.values():
                if job.asset_id == asset_id and job.status == JobStatus.PENDING:
                    return False
            now = _utcnow()
            self.jobs[id] = Job(
                id=id,
                asset_id=asset_id,
                status=JobStatus.PENDING,
                attempt=0,
                next_run_at=next_run_at,
                created_at=now,
                updated_at=now,
            )
            self._order[id] = next(self._sequence)
            return True

    async def get_job(self, job_id: UUID) -> Job:
        async with self._lock:
            job = self.jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return copy.deepcopy(job)

    async def get_job_for_asset(self, asset_id: UUID) -> Optional[Job]:
        async with self._lock:
            matches = [j for j in self.jobs.values() if j.asset_id == asset_id]
            if not matches:
                return None
            latest = max(matches, key=lambda j: self._order[j.id])
            return copy.deepcopy(latest)

    async def list_jobs(
        self, status: Optional[JobStatus] = None, limit: int = 50
    ) -> List[Job]:
        async with self._lock:
            jobs = [
                j for j in self.jobs.values() if status is None or j.status == status
            ]
            jobs.sort(key=lambda j: self._order[j.id])
            return [copy.deepcopy(j) for j in jobs[:limit]]

    async def claim_next(
        self, worker_id: str, now: datetime, lease_expires_at: datetime
    ) -> Optional[Job]:
        async with self._lock:
            candidates = [
                j
                for j in self.jobs.values()
                if j.status == JobStatus.PENDING
                and j.next_run_at <= now
                and (j.lease_expires_at is None or j.lease_expires_at <= now)
            ]
            if not candidates:
                return None
            job = min(candidates, key=lambda j: (j.next_run_at, self._order[j.id]))
            job.lease_owner = worker_id
            job.lease_expires_at = lease_expires_at
            job.attempt += 1
            job.updated_at = _utcnow()
            return copy.deepcopy(job)

    async def renew_lease(
        self, job_id: UUID, worker_id: str, attempt: int, lease_expires_at: datetime
    ) -> bool:
        async with self._lock:
            job = self._held(job_id, worker_id, attempt)
            if job is None:
                return False
            job.lease_expires_at = lease_expires_at
            job.updated_at = _utcnow()
            return True

    async def release_lease(self, job_id: UUID, worker_id: str, attempt: int) -> bool:
        async with self._lock:
            job = self._held(job_id, worker_id, attempt)
            if job is None:
                return False
            job.lease_owner = None
            job.lease_expires_at = None
            job.updated_at = _utcnow()
            return True

    async def delete_job(self, job_id: UUID, worker_id: str, attempt: int) -> bool:
        async with self._lock:
            if self._held(job_id, worker_id, attempt) is None:
                return False
            del self.jobs[job_id]
            return True

    async def reschedule_job(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        next_run_at: datetime,
        error: Dict[str, Any],
    ) -> bool:
        async with self._lock:
            job = self._held(job_id, worker_id, attempt)
            if job is None:
                return False
            job.lease_owner = None
            job.lease_expires_at = None
            job.next_run_at = next_run_at
            job.last_error = dict(error)
            job.updated_at = _utcnow()
            return True

    async def dead_letter_job(
        self, job_id: UUID, worker_id: str, attempt: int, error: Dict[str, Any]
    ) -> bool:
        async with self._lock:
            job = self._held(job_id, worker_id, attempt)
            if job is None:
                return False
            job.status = JobStatus.DEAD
            job.lease_owner = None
            job.lease_expires_at = None
            job.last_error = dict(error)
            job.updated_at = _utcnow()
            return True

    def _held(self, job_id: UUID, worker_id: str, attempt: int) -> Optional[Job]:
        job = self.jobs.get(job_id)
        if (
            job is None
            or job.status != JobStatus.PENDING
            or job.lease_owner != worker_id
            or job.attempt != attempt
        ):
            return None
        return job
