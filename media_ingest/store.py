"""Database store layer for media assets and thumbnail jobs."""

import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

import asyncpg

from media_ingest.errors import JobNotFoundError, UnknownAssetError
from media_ingest.models import Asset, AssetStatus, Job, JobStatus, Variant


class AssetStore:
    """Database layer for asset records."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_asset(
        self,
        id: UUID,
        owner_id: str,
        original_key: str,
        content_type: str,
    ) -> Asset:
        """Insert a new asset in pending_upload state."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO media_assets (
                    id, owner_id, original_key, content_type, status
                ) VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                id,
                owner_id,
                original_key,
                content_type,
                AssetStatus.PENDING_UPLOAD.value,
            )

        return self._row_to_asset(row)

    async def get_asset(self, asset_id: UUID) -> Asset:
        """Get an asset by ID."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM media_assets WHERE id = $1", asset_id)

        if not row:
            raise UnknownAssetError(str(asset_id))

        return self._row_to_asset(row)

    async def transition_status(
        self,
        asset_id: UUID,
        from_statuses: Iterable[AssetStatus],
        to_status: AssetStatus,
    ) -> bool:
        """
        Move an asset to ``to_status`` only if it is currently in one of
        ``from_statuses``.

        Returns True when the row was updated.
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE media_assets
                SET status = $1, updated_at = now()
                WHERE id = $2 AND status = ANY($3::text[])
                """,
                to_status.value,
                asset_id,
                [status.value for status in from_statuses],
            )

        return _affected_rows(result) == 1

    async def mark_ready(self, asset_id: UUID, variants: Dict[str, Variant]) -> bool:
        """Merge variants into the asset and mark it ready."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE media_assets
                SET status = $1,
                    variants = variants || $2::jsonb,
                    last_error = NULL,
                    updated_at = now()
                WHERE id = $3 AND status = $4
                """,
                AssetStatus.READY.value,
                json.dumps({label: v.to_dict() for label, v in variants.items()}),
                asset_id,
                AssetStatus.PROCESSING.value,
            )

        return _affected_rows(result) == 1

    async def mark_failed(self, asset_id: UUID, error: str) -> bool:
        """Mark an asset as failed with the last error reason."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE media_assets
                SET status = $1, last_error = $2, updated_at = now()
                WHERE id = $3 AND status = ANY($4::text[])
                """,
                AssetStatus.FAILED.value,
                error,
                asset_id,
                [AssetStatus.QUEUED.value, AssetStatus.PROCESSING.value],
            )

        return _affected_rows(result) == 1

    def _row_to_asset(self, row: asyncpg.Record) -> Asset:
        """Convert a database row to an Asset model."""
        raw_variants = row["variants"]
        if isinstance(raw_variants, str):
            raw_variants = json.loads(raw_variants)
        return Asset(
            id=row["id"],
            owner_id=row["owner_id"],
            original_key=row["original_key"],
            content_type=row["content_type"],
            status=AssetStatus(row["status"]),
            variants={
                label: Variant.from_dict(data)
                for label, data in (raw_variants or {}).items()
            },
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class JobStore:
    """
    Database layer for thumbnail jobs.

    Lease-holder operations are fenced on ``(lease_owner, attempt)`` so a
    worker whose job was reclaimed cannot touch it any more.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def enqueue_if_absent(
        self, id: UUID, asset_id: UUID, next_run_at: datetime
    ) -> bool:
        """
        Insert a pending job unless the asset already has one.

        Returns True when a new row was inserted.
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                INSERT INTO thumbnail_jobs (id, asset_id, status, attempt, next_run_at)
                VALUES ($1, $2, $3, 0, $4)
                ON CONFLICT (asset_id) WHERE status = 'pending' DO NOTHING
                """,
                id,
                asset_id,
                JobStatus.PENDING.value,
                next_run_at,
            )

        return _affected_rows(result) == 1

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM thumbnail_jobs WHERE id = $1", job_id)

        if not row:
            raise JobNotFoundError(job_id)

        return self._row_to_job(row)

    async def get_job_for_asset(self, asset_id: UUID) -> Optional[Job]:
        """Get the most recent job for an asset, if any."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM thumbnail_jobs
                WHERE asset_id = $1
                ORDER BY created_at DESC
                LIMIT 1
                """,
                asset_id,
            )

        return self._row_to_job(row) if row else None

    async def list_jobs(
        self, status: Optional[JobStatus] = None, limit: int = 50
    ) -> List[Job]:
        """List jobs, optionally filtered by status."""
        query = "SELECT * FROM thumbnail_jobs"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = $1"
            params.append(status.value)
        query += f" ORDER BY created_at ASC LIMIT ${len(params) + 1}"
        params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def claim_next(
        self, worker_id: str, now: datetime, lease_expires_at: datetime
    ) -> Optional[Job]:
        """
        Atomically claim the oldest runnable job.

        Uses FOR UPDATE SKIP LOCKED so two workers racing for the same row
        never both succeed.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE thumbnail_jobs
                SET lease_owner = $1,
                    lease_expires_at = $2,
                    attempt = attempt + 1,
                    updated_at = now()
                WHERE id = (
                    SELECT id FROM thumbnail_jobs
                    WHERE status = $3
                      AND next_run_at <= $4
                      AND (lease_expires_at IS NULL OR lease_expires_at <= $4)
                    ORDER BY next_run_at ASC, created_at ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                worker_id,
                lease_expires_at,
                JobStatus.PENDING.value,
                now,
            )

        return self._row_to_job(row) if row else None

    async def renew_lease(
        self, job_id: UUID, worker_id: str, attempt: int, lease_expires_at: datetime
    ) -> bool:
        """Extend a lease still held by ``worker_id`` for this attempt."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE thumbnail_jobs
                SET lease_expires_at = $1, updated_at = now()
                WHERE id = $2 AND lease_owner = $3 AND attempt = $4 AND status = $5
                """,
                lease_expires_at,
                job_id,
                worker_id,
                attempt,
                JobStatus.PENDING.value,
            )

        return _affected_rows(result) == 1

    async def release_lease(self, job_id: UUID, worker_id: str, attempt: int) -> bool:
        """Give a lease back so the job is immediately claimable again."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE thumbnail_jobs
                SET lease_owner = NULL, lease_expires_at = NULL, updated_at = now()
                WHERE id = $1 AND lease_owner = $2 AND attempt = $3 AND status = $4
                """,
                job_id,
                worker_id,
                attempt,
                JobStatus.PENDING.value,
            )

        return _affected_rows(result) == 1

    async def delete_job(self, job_id: UUID, worker_id: str, attempt: int) -> bool:
        """Delete a successfully completed job."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM thumbnail_jobs
                WHERE id = $1 AND lease_owner = $2 AND attempt = $3 AND status = $4
                """,
                job_id,
                worker_id,
                attempt,
                JobStatus.PENDING.value,
            )

        return _affected_rows(result) == 1

    async def reschedule_job(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        next_run_at: datetime,
        error: Dict[str, Any],
    ) -> bool:
        """Clear the lease and push the job's next run time out for a retry."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE thumbnail_jobs
                SET lease_owner = NULL,
                    lease_expires_at = NULL,
                    next_run_at = $1,
                    last_error = $2,
                    updated_at = now()
                WHERE id = $3 AND lease_owner = $4 AND attempt = $5 AND status = $6
                """,
                next_run_at,
                json.dumps(error),
                job_id,
                worker_id,
                attempt,
                JobStatus.PENDING.value,
            )

        return _affected_rows(result) == 1

    async def dead_letter_job(
        self, job_id: UUID, worker_id: str, attempt: int, error: Dict[str, Any]
    ) -> bool:
        """Mark a job as dead (kept for inspection, never claimable again)."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE thumbnail_jobs
                SET status = $1,
                    lease_owner = NULL,
                    lease_expires_at = NULL,
                    last_error = $2,
                    updated_at = now()
                WHERE id = $3 AND lease_owner = $4 AND attempt = $5 AND status = $6
                """,
                JobStatus.DEAD.value,
                json.dumps(error),
                job_id,
                worker_id,
                attempt,
                JobStatus.PENDING.value,
            )

        return _affected_rows(result) == 1

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            asset_id=row["asset_id"],
            status=JobStatus(row["status"]),
            attempt=row["attempt"],
            next_run_at=row["next_run_at"],
            lease_owner=row["lease_owner"],
            lease_expires_at=row["lease_expires_at"],
            last_error=json.loads(row["last_error"])
            if row["last_error"] and isinstance(row["last_error"], str)
            else row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _affected_rows(result: Optional[str]) -> int:
    # asyncpg command tags look like "UPDATE 1", "INSERT 0 1", "DELETE 0"
    if not result:
        return 0
    return int(result.split()[-1])
