"""Presign service: hands out upload/download capabilities for assets."""

import logging
from typing import Dict, Optional
from uuid import UUID, uuid4

from media_ingest.config import MediaIngestConfig
from media_ingest.errors import (
    InvalidContentTypeError,
    NotReadyError,
    UnknownAssetError,
    VariantNotFoundError,
)
from media_ingest.models import Asset, AssetStatus, original_key
from media_ingest.object_store import ObjectStoreClient


class UploadTicket:
    """What a client needs to PUT its original straight to the object store."""

    def __init__(
        self, asset_id: UUID, url: str, required_headers: Dict[str, str], key: str
    ):
        self.asset_id = asset_id
        self.url = url
        self.required_headers = required_headers
        self.key = key


class PresignService:
    """
    Issues signed URLs and records pending assets.

    Never touches object bytes: issuing a URL has no side effect on the store.
    """

    def __init__(
        self,
        config: MediaIngestConfig,
        asset_store,
        object_store: ObjectStoreClient,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.asset_store = asset_store
        self.object_store = object_store
        self.logger = logger or logging.getLogger(__name__)

    async def request_upload(self, owner_id: str, content_type: str) -> UploadTicket:
        """
        Reserve a new asset and sign an upload URL for its original.

        Raises:
            InvalidContentTypeError: If ``content_type`` is not an allowed image type
            ValueError: If ``owner_id`` cannot be used as a key prefix
        """
        if not self.config.is_content_type_allowed(content_type):
            raise InvalidContentTypeError(content_type)
        _check_owner_id(owner_id)

        asset_id = uuid4()
        key = original_key(owner_id, asset_id)
        await self.asset_store.insert_asset(
            id=asset_id,
            owner_id=owner_id,
            original_key=key,
            content_type=content_type,
        )

        presigned = self.object_store.issue_put_url(key, content_type)
        self.logger.info(f"Issued upload URL for asset {asset_id} (owner {owner_id})")
        return UploadTicket(
            asset_id=asset_id,
            url=presigned.url,
            required_headers=presigned.required_headers,
            key=key,
        )

    async def request_download(
        self,
        asset_id: UUID,
        variant: Optional[str] = None,
        owner_id: Optional[str] = None,
        download_name: Optional[str] = None,
    ) -> str:
        """
        Sign a download URL for an asset's original or one of its variants.

        Raises:
            UnknownAssetError: If the asset does not exist (or is not ``owner_id``'s)
            NotReadyError: If nothing downloadable exists yet for the request
            VariantNotFoundError: If the asset is ready but lacks ``variant``
        """
        asset = await self.get_status(asset_id, owner_id=owner_id)

        if variant:
            stored = asset.variants.get(variant)
            if stored is None:
                if asset.status != AssetStatus.READY:
                    raise NotReadyError(str(asset_id), asset.status.value)
                raise VariantNotFoundError(str(asset_id), variant)
            key = stored.key
        else:
            if asset.status == AssetStatus.PENDING_UPLOAD:
                raise NotReadyError(str(asset_id), asset.status.value)
            key = asset.original_key

        return self.object_store.issue_get_url(key, download_name=download_name)

    async def get_status(self, asset_id: UUID, owner_id: Optional[str] = None) -> Asset:
        """Look up an asset, optionally restricted to one owner."""
        asset = await self.asset_store.get_asset(asset_id)
        if owner_id is not None and asset.owner_id != owner_id:
            raise UnknownAssetError(str(asset_id))
        return asset


def _check_owner_id(owner_id: str) -> None:
    if not owner_id or "/" in owner_id or owner_id in (".", ".."):
        raise ValueError(f"Invalid owner id {owner_id!r}")
