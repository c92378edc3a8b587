"""Unit tests for the thumbnail worker."""

import asyncio
import time
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from media_ingest.completion import CompletionHandler
from media_ingest.config import JobQueueConfig
from media_ingest.errors import StoreError
from media_ingest.models import AssetStatus, JobStatus
from media_ingest.queue import JobQueue
from media_ingest.thumbnails import ThumbnailGenerator
from media_ingest.worker import ThumbnailWorker


class SlowGenerator(ThumbnailGenerator):
    """Generator that blocks its thread before rendering."""

    def __init__(self, variant_sizes, delay):
        super().__init__(variant_sizes)
        self.delay = delay

    def generate(self, image_data):
        time.sleep(self.delay)
        return super().generate(image_data)


@pytest.fixture
def queue(config, job_store, asset_store, clock):
    return JobQueue(config.job_queue, job_store, asset_store, clock=clock)


@pytest.fixture
def worker(config, queue, asset_store, fake_object_store):
    return ThumbnailWorker(
        config.worker, queue, asset_store, fake_object_store, worker_id="w1"
    )


@pytest.fixture
def upload(asset_store, queue, fake_object_store):
    """Create an asset, store its original and report the upload finished."""

    async def _upload(data, content_type="image/png", owner_id="u1"):
        asset_id = uuid4()
        key = f"{owner_id}/{asset_id}/original"
        await asset_store.insert_asset(
            id=asset_id, owner_id=owner_id, original_key=key, content_type=content_type
        )
        if data is not None:
            fake_object_store.objects[key] = data
        await CompletionHandler(asset_store, queue).notify_uploaded(asset_id)
        return asset_id

    return _upload


@pytest.mark.asyncio
async def test_run_once_produces_variants(worker, upload, asset_store, job_store, fake_object_store, make_image):
    """Test the full fetch, transform, store and settle path."""
    asset_id = await upload(make_image("PNG", size=(800, 600)))

    job = await worker.run_once()

    assert job is not None
    asset = await asset_store.get_asset(asset_id)
    assert asset.status == AssetStatus.READY
    assert asset.last_error is None
    assert set(asset.variants) == {"thumb", "medium"}
    assert asset.variants["thumb"].key == f"u1/{asset_id}/thumb"
    assert (asset.variants["thumb"].width, asset.variants["thumb"].height) == (64, 48)
    assert (asset.variants["medium"].width, asset.variants["medium"].height) == (256, 192)
    assert fake_object_store.content_types[f"u1/{asset_id}/medium"] == "image/png"
    assert await job_store.list_jobs() == []


@pytest.mark.asyncio
async def test_run_once_idle(worker):
    assert await worker.run_once() is None


@pytest.mark.asyncio
async def test_decode_error_fails_without_retry(worker, upload, asset_store, queue):
    asset_id = await upload(b"this is not an image")

    await worker.run_once()

    asset = await asset_store.get_asset(asset_id)
    assert asset.status == AssetStatus.FAILED
    assert asset.last_error.startswith("DecodeError")
    dead = await queue.list_dead_letters()
    assert len(dead) == 1
    assert dead[0].attempt == 1


@pytest.mark.asyncio
async def test_missing_original_fails_without_retry(worker, upload, asset_store, queue):
    asset_id = await upload(None)

    await worker.run_once()

    asset = await asset_store.get_asset(asset_id)
    assert asset.status == AssetStatus.FAILED
    assert asset.last_error.startswith("SourceMissing")
    assert (await queue.list_dead_letters())[0].attempt == 1


@pytest.mark.asyncio
async def test_empty_original_is_source_missing(worker, upload, asset_store):
    asset_id = await upload(b"")

    await worker.run_once()

    assert (await asset_store.get_asset(asset_id)).last_error.startswith("SourceMissing")


@pytest.mark.asyncio
async def test_transient_fetch_error_is_retried(worker, upload, asset_store, job_store, fake_object_store, make_image, clock):
    asset_id = await upload(make_image())
    fake_object_store.fetch_errors.append(
        StoreError("503 Slow Down", transient=True, status_code=503)
    )

    job = await worker.run_once()

    stored = await job_store.get_job(job.id)
    assert stored.status == JobStatus.PENDING
    assert stored.attempt == 1
    assert stored.next_run_at > clock.now
    assert stored.last_error["reason"] == "StoreError"
    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.QUEUED

    clock.now = stored.next_run_at
    await worker.run_once()

    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.READY


@pytest.mark.asyncio
async def test_partial_upload_retry_is_idempotent(worker, upload, asset_store, fake_object_store, make_image, clock, job_store):
    """Test that a retry after a partial variant write yields the same variants."""
    asset_id = await upload(make_image("JPEG", size=(1000, 500)))
    # Second write of the first attempt fails after the thumb is stored
    outcomes = [None, StoreError("500 Internal", transient=True, status_code=500)]
    original_put = fake_object_store.put_object

    def flaky_put(key, data, content_type):
        error = outcomes.pop(0) if outcomes else None
        if error is not None:
            raise error
        original_put(key, data, content_type)

    fake_object_store.put_object = flaky_put
    first_job = await worker.run_once()
    thumb_key = f"u1/{asset_id}/thumb"
    first_thumb = fake_object_store.objects[thumb_key]

    clock.now = (await job_store.get_job(first_job.id)).next_run_at
    await worker.run_once()

    asset = await asset_store.get_asset(asset_id)
    assert asset.status == AssetStatus.READY
    assert fake_object_store.objects[thumb_key] == first_thumb
    assert (asset.variants["thumb"].width, asset.variants["thumb"].height) == (64, 32)


@pytest.mark.asyncio
async def test_unexpected_error_is_retryable(config, queue, asset_store, job_store, fake_object_store, upload, make_image):
    generator = MagicMock()
    generator.generate.side_effect = RuntimeError("pillow exploded")
    worker = ThumbnailWorker(
        config.worker, queue, asset_store, fake_object_store, generator=generator
    )
    await upload(make_image())

    job = await worker.run_once()

    stored = await job_store.get_job(job.id)
    assert stored.status == JobStatus.PENDING
    assert stored.last_error["type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_stale_worker_does_not_mark_ready(worker, upload, asset_store, job_store, queue, make_image, clock):
    """Test that losing the lease stops the holder before the final write."""
    asset_id = await upload(make_image())
    stale = await queue.claim_next("w1")
    clock.advance(31)
    fresh = await queue.claim_next("w2")

    await worker.process_job(stale)

    asset = await asset_store.get_asset(asset_id)
    assert asset.status != AssetStatus.READY
    assert asset.variants == {}
    stored = await job_store.get_job(fresh.id)
    assert stored.lease_owner == "w2"
    assert stored.attempt == 2


@pytest.mark.asyncio
async def test_lost_lease_leaves_waiting_asset_queued(worker, upload, asset_store, queue, job_store, make_image):
    """Test that a worker without the lease does not move the asset to processing."""
    asset_id = await upload(make_image())
    stale = await queue.claim_next("w1")
    await queue.fail_job(stale, "503 Slow Down", retryable=True, reason="StoreError")
    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.QUEUED

    await worker.process_job(stale)

    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.QUEUED
    stored = await job_store.get_job(stale.id)
    assert stored.lease_owner is None
    assert stored.last_error["reason"] == "StoreError"


@pytest.fixture
def short_lease_queue(job_store, asset_store):
    """Queue on the real clock with a lease short enough to expire mid-transform."""
    return JobQueue(
        JobQueueConfig(max_attempts=3, lease_duration_seconds=0.3), job_store, asset_store
    )


@pytest.mark.asyncio
async def test_heartbeat_keeps_lease_during_slow_transform(config, short_lease_queue, asset_store, fake_object_store, upload, make_image):
    """Test that renewals stop other workers claiming a job that outlives its lease."""
    worker = ThumbnailWorker(
        config.worker,
        short_lease_queue,
        asset_store,
        fake_object_store,
        generator=SlowGenerator(config.worker.variant_sizes, delay=1.0),
        worker_id="w1",
    )
    asset_id = await upload(make_image())
    job = await short_lease_queue.claim_next("w1")

    task = asyncio.create_task(worker.process_job(job))
    await asyncio.sleep(0.6)
    assert await short_lease_queue.claim_next("w2") is None
    await asyncio.wait_for(task, timeout=5)

    asset = await asset_store.get_asset(asset_id)
    assert asset.status == AssetStatus.READY
    assert set(asset.variants) == {"thumb", "medium"}


@pytest.mark.asyncio
async def test_heartbeat_stops_writes_after_lease_is_taken(config, short_lease_queue, asset_store, job_store, fake_object_store, upload, make_image):
    """Test that no variant is stored once a renewal finds the lease gone."""
    worker = ThumbnailWorker(
        config.worker,
        short_lease_queue,
        asset_store,
        fake_object_store,
        generator=SlowGenerator(config.worker.variant_sizes, delay=1.0),
        worker_id="w1",
    )
    asset_id = await upload(make_image())
    job = await short_lease_queue.claim_next("w1")
    puts = []
    original_put = fake_object_store.put_object

    def recording_put(key, data, content_type):
        puts.append(key)
        original_put(key, data, content_type)

    fake_object_store.put_object = recording_put

    task = asyncio.create_task(worker.process_job(job))
    await asyncio.sleep(0.15)
    assert await job_store.release_lease(job.id, "w1", job.attempt)
    taken = await short_lease_queue.claim_next("w2")
    assert taken.attempt == job.attempt + 1
    await asyncio.wait_for(task, timeout=5)

    assert puts == []
    asset = await asset_store.get_asset(asset_id)
    assert asset.status != AssetStatus.READY
    assert asset.variants == {}
    assert (await job_store.get_job(job.id)).lease_owner == "w2"


@pytest.mark.asyncio
async def test_run_until_shutdown(config, queue, asset_store, fake_object_store, upload, make_image):
    """Test that the loop drains the queue and exits on the shutdown event."""
    config.worker.concurrency = 2
    worker = ThumbnailWorker(config.worker, queue, asset_store, fake_object_store)
    asset_ids = [await upload(make_image()) for _ in range(3)]
    shutdown = asyncio.Event()

    task = asyncio.create_task(worker.run(shutdown))
    for _ in range(500):
        statuses = [(await asset_store.get_asset(a)).status for a in asset_ids]
        if all(s == AssetStatus.READY for s in statuses):
            break
        await asyncio.sleep(0.01)

    shutdown.set()
    await asyncio.wait_for(task, timeout=5)

    for asset_id in asset_ids:
        assert (await asset_store.get_asset(asset_id)).status == AssetStatus.READY
