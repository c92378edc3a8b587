"""Unit tests for the completion handler."""

import asyncio
from uuid import uuid4

import pytest

from media_ingest.completion import CompletionHandler
from media_ingest.errors import UnknownAssetError
from media_ingest.models import AssetStatus
from media_ingest.queue import JobQueue


@pytest.fixture
def handler(config, asset_store, job_store, clock):
    queue = JobQueue(config.job_queue, job_store, asset_store, clock=clock)
    return CompletionHandler(asset_store, queue)


async def _pending_asset(asset_store, owner_id="u1"):
    asset_id = uuid4()
    await asset_store.insert_asset(
        id=asset_id,
        owner_id=owner_id,
        original_key=f"{owner_id}/{asset_id}/original",
        content_type="image/jpeg",
    )
    return asset_id


@pytest.mark.asyncio
async def test_notify_uploaded_queues_asset(handler, asset_store, job_store):
    asset_id = await _pending_asset(asset_store)

    assert await handler.notify_uploaded(asset_id) is True

    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.QUEUED
    job = await job_store.get_job_for_asset(asset_id)
    assert job is not None
    assert job.attempt == 0


@pytest.mark.asyncio
async def test_repeated_notify_is_noop(handler, asset_store, job_store):
    asset_id = await _pending_asset(asset_store)

    assert await handler.notify_uploaded(asset_id) is True
    assert await handler.notify_uploaded(asset_id) is False
    assert await handler.notify_uploaded(asset_id) is False

    assert len(await job_store.list_jobs()) == 1


@pytest.mark.asyncio
async def test_concurrent_notify_creates_one_job(handler, asset_store, job_store):
    """Test that racing completions produce exactly one job."""
    asset_id = await _pending_asset(asset_store)

    results = await asyncio.gather(
        *(handler.notify_uploaded(asset_id) for _ in range(20))
    )

    assert any(results)
    assert len(await job_store.list_jobs()) == 1
    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.QUEUED


@pytest.mark.asyncio
async def test_notify_unknown_asset(handler):
    with pytest.raises(UnknownAssetError):
        await handler.notify_uploaded(uuid4())


@pytest.mark.asyncio
async def test_notify_for_other_owner_is_unknown(handler, asset_store):
    asset_id = await _pending_asset(asset_store, owner_id="u1")

    with pytest.raises(UnknownAssetError):
        await handler.notify_uploaded(asset_id, owner_id="u2")

    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.PENDING_UPLOAD


@pytest.mark.asyncio
async def test_notify_after_ready_is_noop(handler, asset_store, job_store):
    asset_id = await _pending_asset(asset_store)
    await asset_store.transition_status(
        asset_id, [AssetStatus.PENDING_UPLOAD], AssetStatus.PROCESSING
    )
    await asset_store.mark_ready(asset_id, {})

    assert await handler.notify_uploaded(asset_id) is False

    assert await job_store.list_jobs() == []
    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.READY


@pytest.mark.asyncio
async def test_notify_resumes_asset_stuck_in_uploaded(handler, asset_store, job_store):
    """Test recovery when an earlier call stopped before enqueueing."""
    asset_id = await _pending_asset(asset_store)
    await asset_store.transition_status(
        asset_id, [AssetStatus.PENDING_UPLOAD], AssetStatus.UPLOADED
    )

    assert await handler.notify_uploaded(asset_id) is True

    assert (await asset_store.get_asset(asset_id)).status == AssetStatus.QUEUED
    assert len(await job_store.list_jobs()) == 1
