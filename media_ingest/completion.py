"""Completion handler: turns a client's "upload finished" signal into one job."""

import logging
from typing import Optional
from uuid import UUID

from media_ingest.errors import UnknownAssetError
from media_ingest.models import PAST_UPLOADED_STATUSES, AssetStatus
from media_ingest.queue import JobQueue


class CompletionHandler:
    """
    Records client-reported upload completion and enqueues processing.

    Does not check the object store; the worker verifies the original exists
    as its first step.
    """

    def __init__(
        self,
        asset_store,
        job_queue: JobQueue,
        logger: Optional[logging.Logger] = None,
    ):
        self.asset_store = asset_store
        self.job_queue = job_queue
        self.logger = logger or logging.getLogger(__name__)

    async def notify_uploaded(self, asset_id: UUID, owner_id: Optional[str] = None) -> bool:
        """
        Move a pending asset to ``queued`` and create its job.

        Safe to call repeatedly and concurrently: exactly one call wins the
        ``pending_upload -> uploaded`` transition, later calls are no-ops.

        Returns:
            True if this call moved the asset forward, False for a no-op

        Raises:
            UnknownAssetError: If the asset does not exist (or is not ``owner_id``'s)
        """
        if owner_id is not None:
            asset = await self.asset_store.get_asset(asset_id)
            if asset.owner_id != owner_id:
                raise UnknownAssetError(str(asset_id))

        won = await self.asset_store.transition_status(
            asset_id, [AssetStatus.PENDING_UPLOAD], AssetStatus.UPLOADED
        )
        if not won:
            asset = await self.asset_store.get_asset(asset_id)
            if asset.status in PAST_UPLOADED_STATUSES:
                self.logger.debug(
                    f"Duplicate completion for asset {asset_id} (status={asset.status.value})"
                )
                return False
            if asset.status != AssetStatus.UPLOADED:
                return False
            # Stuck in uploaded: an earlier call stopped before enqueueing
            self.logger.info(f"Resuming enqueue for asset {asset_id}")

        await self.job_queue.enqueue_if_absent(asset_id)
        moved = await self.asset_store.transition_status(
            asset_id, [AssetStatus.UPLOADED], AssetStatus.QUEUED
        )
        if moved:
            self.logger.info(f"Asset {asset_id} queued for thumbnail generation")
        return won or moved
