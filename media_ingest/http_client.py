"""HTTP client for the media files API."""

from typing import Any, Dict, Mapping, Optional
from uuid import UUID

import aiohttp

from media_ingest.errors import RemoteHttpError


class MediaFilesHttpClient:
    """HTTP client for calling the media files API as one owner."""

    def __init__(
        self,
        base_url: str,
        owner_id: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL of the API (e.g., "http://localhost:4060")
            owner_id: Optional owner id sent as the X-Owner-Id header
            headers: Extra headers sent with every API request (e.g. auth)
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.extra_headers = dict(headers or {})
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def presign_put(self, content_type: str) -> Dict[str, Any]:
        """
        Reserve an asset and get its signed upload URL.

        Returns:
            Dictionary with assetId, url, requiredHeaders and key

        Raises:
            RemoteHttpError: If the HTTP request fails
        """
        return await self._request(
            "POST",
            "/api/files/presign-put",
            "Failed to presign upload",
            json={"contentType": content_type},
        )

    async def presign_get(
        self,
        asset_id: UUID,
        variant: Optional[str] = None,
        download_name: Optional[str] = None,
    ) -> str:
        """
        Get a signed download URL for an original or a variant.

        Raises:
            RemoteHttpError: If the HTTP request fails (409 while not ready)
        """
        params = {"assetId": str(asset_id)}
        if variant:
            params["variant"] = variant
        if download_name:
            params["downloadName"] = download_name

        data = await self._request(
            "GET", "/api/files/presign-get", "Failed to presign download", params=params
        )
        return data["url"]

    async def complete(self, asset_id: UUID) -> bool:
        """Tell the service the upload finished. Safe to repeat."""
        data = await self._request(
            "POST",
            "/api/files/complete",
            "Failed to complete upload",
            json={"assetId": str(asset_id)},
        )
        return bool(data.get("ok"))

    async def get_status(self, asset_id: UUID) -> Dict[str, Any]:
        """
        Get processing status and variants of an asset.

        Raises:
            RemoteHttpError: If the HTTP request fails
        """
        return await self._request(
            "GET",
            "/api/files/status",
            "Failed to get asset status",
            params={"assetId": str(asset_id)},
        )

    async def upload(
        self, url: str, required_headers: Mapping[str, str], data: bytes
    ) -> None:
        """
        PUT object bytes to a signed upload URL.

        ``required_headers`` must be sent exactly as returned by
        ``presign_put``; the object store rejects the request otherwise.

        Raises:
            RemoteHttpError: If the object store rejects the upload
        """
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.put(
                    url, data=data, headers=dict(required_headers)
                ) as resp:
                    if resp.status >= 400:
                        response_body = await resp.text()
                        raise RemoteHttpError(
                            status_code=resp.status,
                            message=f"Upload rejected: {response_body}",
                            response_body=response_body,
                        )

            except aiohttp.ClientError as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Network error: {str(e)}",
                ) from e

    def _headers(self) -> Dict[str, str]:
        headers = dict(self.extra_headers)
        if self.owner_id:
            headers["X-Owner-Id"] = self.owner_id
        return headers

    async def _request(
        self, method: str, path: str, failure: str, **kwargs: Any
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.request(
                    method, url, headers=self._headers(), **kwargs
                ) as resp:
                    response_body = await resp.text()

                    if resp.status >= 400:
                        raise RemoteHttpError(
                            status_code=resp.status,
                            message=f"{failure}: {response_body}",
                            response_body=response_body,
                        )

                    return await resp.json()

            except aiohttp.ClientError as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Network error: {str(e)}",
                ) from e
