"""FastAPI router for the media files HTTP API."""

import logging
from typing import Any, Callable, Dict, NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from media_ingest.completion import CompletionHandler
from media_ingest.errors import (
    InvalidContentTypeError,
    NotReadyError,
    UnknownAssetError,
    VariantNotFoundError,
)
from media_ingest.presign import PresignService


logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PresignPutRequest(CamelModel):
    """Request model for an upload URL."""

    content_type: str


class PresignPutResponse(CamelModel):
    """Response model for an upload URL."""

    asset_id: str
    url: str
    required_headers: Dict[str, str]
    key: str


class PresignGetResponse(CamelModel):
    """Response model for a download URL."""

    url: str


class CompleteRequest(CamelModel):
    """Request model for an upload-finished notification."""

    asset_id: str


class CompleteResponse(CamelModel):
    """Response model for an upload-finished notification."""

    ok: bool = True


class VariantResponse(CamelModel):
    """One stored variant."""

    key: str
    width: int
    height: int
    content_type: str


class AssetStatusResponse(CamelModel):
    """Response model for asset status."""

    asset_id: str
    status: str
    content_type: str
    variants: Dict[str, VariantResponse]
    last_error: Optional[str] = None


async def owner_from_header(
    x_owner_id: Optional[str] = Header(None, alias="X-Owner-Id")
) -> str:
    """Default principal resolver: trust an upstream-set X-Owner-Id header."""
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id


def create_files_router(
    presign_service_factory: Callable[[], PresignService],
    completion_handler_factory: Callable[[], CompletionHandler],
    owner_dependency: Optional[Callable[..., Any]] = None,
) -> APIRouter:
    """
    Create FastAPI router for the media files API.

    Args:
        presign_service_factory: Callable that returns a PresignService instance
        completion_handler_factory: Callable that returns a CompletionHandler instance
        owner_dependency: FastAPI dependency resolving the requesting owner id
            (defaults to the X-Owner-Id header)

    Returns:
        APIRouter instance
    """
    router = APIRouter(prefix="/api/files")
    owner_dep = owner_dependency or owner_from_header

    async def get_presign_service() -> PresignService:
        """Dependency to get PresignService instance."""
        return presign_service_factory()

    async def get_completion_handler() -> CompletionHandler:
        """Dependency to get CompletionHandler instance."""
        return completion_handler_factory()

    @router.post("/presign-put", response_model=PresignPutResponse)
    async def presign_put(
        request: PresignPutRequest,
        owner_id: str = Depends(owner_dep),
        presign_service: PresignService = Depends(get_presign_service),
    ):
        """Reserve an asset and return a signed upload URL."""
        try:
            ticket = await presign_service.request_upload(owner_id, request.content_type)
        except Exception as e:
            _raise_http_error(e, "Error issuing upload URL")

        return PresignPutResponse(
            asset_id=str(ticket.asset_id),
            url=ticket.url,
            required_headers=ticket.required_headers,
            key=ticket.key,
        )

    @router.get("/presign-get", response_model=PresignGetResponse)
    async def presign_get(
        asset_id: str = Query(..., alias="assetId"),
        variant: Optional[str] = Query(None),
        download_name: Optional[str] = Query(None, alias="downloadName"),
        owner_id: str = Depends(owner_dep),
        presign_service: PresignService = Depends(get_presign_service),
    ):
        """Return a signed download URL for an original or variant."""
        asset_uuid = _parse_asset_id(asset_id)
        try:
            url = await presign_service.request_download(
                asset_uuid,
                variant=variant,
                owner_id=owner_id,
                download_name=download_name,
            )
        except Exception as e:
            _raise_http_error(e, "Error issuing download URL")

        return PresignGetResponse(url=url)

    @router.post("/complete", response_model=CompleteResponse)
    async def complete(
        request: CompleteRequest,
        owner_id: str = Depends(owner_dep),
        completion_handler: CompletionHandler = Depends(get_completion_handler),
    ):
        """Record that the client finished uploading. Idempotent."""
        asset_uuid = _parse_asset_id(request.asset_id)
        try:
            await completion_handler.notify_uploaded(asset_uuid, owner_id=owner_id)
        except Exception as e:
            _raise_http_error(e, "Error recording upload completion")

        return CompleteResponse(ok=True)

    @router.get("/status", response_model=AssetStatusResponse)
    async def status(
        asset_id: str = Query(..., alias="assetId"),
        owner_id: str = Depends(owner_dep),
        presign_service: PresignService = Depends(get_presign_service),
    ):
        """Return processing status, variants and last error of an asset."""
        asset_uuid = _parse_asset_id(asset_id)
        try:
            asset = await presign_service.get_status(asset_uuid, owner_id=owner_id)
        except Exception as e:
            _raise_http_error(e, "Error getting asset status")

        return AssetStatusResponse(
            asset_id=str(asset.id),
            status=asset.status.value,
            content_type=asset.content_type,
            variants={
                label: VariantResponse(**variant.to_dict())
                for label, variant in asset.variants.items()
            },
            last_error=asset.last_error,
        )

    return router


def _parse_asset_id(asset_id: str) -> UUID:
    try:
        return UUID(asset_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid asset ID format") from e


def _raise_http_error(e: Exception, context: str) -> NoReturn:
    if isinstance(e, InvalidContentTypeError):
        raise HTTPException(status_code=400, detail=str(e)) from e
    if isinstance(e, (UnknownAssetError, VariantNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e)) from e
    if isinstance(e, NotReadyError):
        raise HTTPException(status_code=409, detail=str(e)) from e
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e)) from e
    logger.exception(context)
    raise HTTPException(status_code=500, detail="Internal server error") from e
