"""Worker logic for thumbnail generation."""

import asyncio
import contextlib
import logging
import os
import socket
from typing import Optional
from uuid import uuid4

import asyncpg

from media_ingest.config import MediaIngestConfig, WorkerConfig
from media_ingest.errors import (
    DecodeError,
    LeaseExpiredError,
    SourceMissingError,
    StoreError,
    UnknownAssetError,
)
from media_ingest.models import AssetStatus, Job, Variant, variant_key
from media_ingest.object_store import ObjectStoreClient
from media_ingest.queue import JobQueue
from media_ingest.store import AssetStore, JobStore
from media_ingest.thumbnails import ThumbnailGenerator

# Pause after an unexpected error while polling
ERROR_PAUSE_SECONDS = 5


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class ThumbnailWorker:
    """
    Claims thumbnail jobs and turns originals into stored variants.

    Correctness across any number of workers rests on the job lease: every
    write to the asset happens only while the lease is confirmed held.
    """

    def __init__(
        self,
        config: WorkerConfig,
        job_queue: JobQueue,
        asset_store,
        object_store: ObjectStoreClient,
        generator: Optional[ThumbnailGenerator] = None,
        worker_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.job_queue = job_queue
        self.asset_store = asset_store
        self.object_store = object_store
        self.logger = logger or logging.getLogger(__name__)
        self.generator = generator or ThumbnailGenerator(
            config.variant_sizes, quality=config.jpeg_quality, logger=self.logger
        )
        self.worker_id = worker_id or default_worker_id()

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run ``config.concurrency`` consumers until ``shutdown_event`` is set."""
        if self.config.concurrency == 1:
            await self._consume(self.worker_id, shutdown_event)
            return

        consumers = [
            self._consume(f"{self.worker_id}-{i}", shutdown_event)
            for i in range(self.config.concurrency)
        ]
        await asyncio.gather(*consumers)

    async def run_once(self, worker_id: Optional[str] = None) -> Optional[Job]:
        """Claim and process at most one job. Returns the job, or None if idle."""
        job = await self.job_queue.claim_next(worker_id or self.worker_id)
        if job is None:
            return None
        await self.process_job(job)
        return job

    async def process_job(self, job: Job) -> None:
        """
        Fetch, transform and store one claimed job, then settle it.

        Failures are recorded through the job queue and never raised.
        """
        lease_lost = asyncio.Event()
        heartbeat = asyncio.create_task(self._keep_lease(job, lease_lost))
        try:
            await self._process(job, lease_lost)
        except LeaseExpiredError as e:
            self.logger.warning(f"Abandoning job {job.id}: {e}")
        except SourceMissingError as e:
            await self.job_queue.fail_job(job, e, retryable=False, reason="SourceMissing")
        except DecodeError as e:
            await self.job_queue.fail_job(job, e, retryable=False, reason="DecodeError")
        except UnknownAssetError as e:
            await self.job_queue.fail_job(job, e, retryable=False, reason="UnknownAsset")
        except StoreError as e:
            await self.job_queue.fail_job(job, e, retryable=e.transient, reason="StoreError")
        except Exception as e:
            self.logger.error(f"Job {job.id} failed unexpectedly: {e}", exc_info=True)
            await self.job_queue.fail_job(job, e, retryable=True, reason=type(e).__name__)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

    async def _process(self, job: Job, lease_lost: asyncio.Event) -> None:
        asset = await self.asset_store.get_asset(job.asset_id)
        if not await self.job_queue.renew_lease(job):
            raise LeaseExpiredError(job.id, job.lease_owner)
        await self.asset_store.transition_status(
            asset.id,
            [AssetStatus.UPLOADED, AssetStatus.QUEUED, AssetStatus.PROCESSING],
            AssetStatus.PROCESSING,
        )
        self.logger.info(f"Processing asset {asset.id} (job {job.id}, attempt {job.attempt})")

        try:
            original = await asyncio.to_thread(
                self.object_store.fetch_object, asset.original_key
            )
        except StoreError as e:
            if e.transient:
                raise
            raise SourceMissingError(asset.original_key, str(e)) from e
        if not original:
            raise SourceMissingError(asset.original_key, f"{asset.original_key} is empty")

        rendered = await asyncio.to_thread(self.generator.generate, original)

        variants = {}
        for label, result in rendered.items():
            self._check_lease(job, lease_lost)
            key = variant_key(asset.owner_id, asset.id, label)
            await asyncio.to_thread(
                self.object_store.put_object, key, result.data, result.content_type
            )
            variants[label] = Variant(
                key=key,
                width=result.width,
                height=result.height,
                content_type=result.content_type,
            )

        self._check_lease(job, lease_lost)
        if not await self.job_queue.renew_lease(job):
            raise LeaseExpiredError(job.id, job.lease_owner)

        await self.asset_store.mark_ready(asset.id, variants)
        await self.job_queue.complete_job(job)
        self.logger.info(f"Asset {asset.id} ready with variants {sorted(variants)}")

    async def _keep_lease(self, job: Job, lease_lost: asyncio.Event) -> None:
        interval = self.job_queue.config.lease_duration_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.job_queue.renew_lease(job)
            except Exception as e:
                self.logger.warning(f"Lease renewal for job {job.id} failed: {e}")
                continue
            if not renewed:
                lease_lost.set()
                return

    def _check_lease(self, job: Job, lease_lost: asyncio.Event) -> None:
        if lease_lost.is_set():
            raise LeaseExpiredError(job.id, job.lease_owner)

    async def _consume(self, worker_id: str, shutdown_event: asyncio.Event) -> None:
        self.logger.info(f"Starting thumbnail consumer {worker_id}")
        idle_interval = self.config.poll_interval_seconds

        while not shutdown_event.is_set():
            try:
                job = await self.run_once(worker_id)
            except Exception as e:
                self.logger.error(f"Error in worker loop: {str(e)}", exc_info=True)
                await _wait_for_shutdown(shutdown_event, ERROR_PAUSE_SECONDS)
                continue

            if job is None:
                self.logger.debug(f"No runnable jobs, sleeping {idle_interval}s")
                await _wait_for_shutdown(shutdown_event, idle_interval)
                idle_interval = min(
                    idle_interval * 2, self.config.max_idle_poll_interval_seconds
                )
            else:
                idle_interval = self.config.poll_interval_seconds

        self.logger.info(f"Shutdown signal received, consumer {worker_id} exiting")


async def run_worker_loop(
    config: MediaIngestConfig,
    db_pool: asyncpg.Pool,
    object_store: ObjectStoreClient,
    logger: logging.Logger,
    worker_id: Optional[str] = None,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Run the thumbnail worker against Postgres-backed stores.

    Args:
        config: Media ingest configuration
        db_pool: Database connection pool
        object_store: Object store client
        logger: Logger instance
        worker_id: Lease owner name (defaults to host-pid-random)
        shutdown_event: Optional event to signal shutdown
    """
    asset_store = AssetStore(db_pool)
    job_queue = JobQueue(config.job_queue, JobStore(db_pool), asset_store, logger)
    worker = ThumbnailWorker(
        config.worker,
        job_queue,
        asset_store,
        object_store,
        worker_id=worker_id,
        logger=logger,
    )
    await worker.run(shutdown_event or asyncio.Event())


async def _wait_for_shutdown(shutdown_event: asyncio.Event, timeout: float) -> None:
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(shutdown_event.wait(), timeout)
