"""Exception types for the media ingestion pipeline."""

from typing import Optional


class MediaIngestError(Exception):
    """Base exception for all media ingestion errors."""

    pass


class InvalidContentTypeError(MediaIngestError):
    """Raised when an upload is requested for a content type outside the allow-list."""

    def __init__(self, content_type: Optional[str], message: str = None):
        self.content_type = content_type
        if message is None:
            message = f"Content type {content_type!r} is not allowed"
        super().__init__(message)


class UnknownAssetError(MediaIngestError):
    """Raised when an asset id does not exist."""

    def __init__(self, asset_id: str, message: str = None):
        self.asset_id = asset_id
        if message is None:
            message = f"Asset {asset_id} not found"
        super().__init__(message)


class NotReadyError(MediaIngestError):
    """Raised when an asset has no downloadable object yet."""

    def __init__(self, asset_id: str, status: str, message: str = None):
        self.asset_id = asset_id
        self.status = status
        if message is None:
            message = f"Asset {asset_id} is not ready for download (status={status})"
        super().__init__(message)


class VariantNotFoundError(MediaIngestError):
    """Raised when a requested variant label does not exist on an asset."""

    def __init__(self, asset_id: str, variant: str, message: str = None):
        self.asset_id = asset_id
        self.variant = variant
        if message is None:
            message = f"Variant {variant!r} not found for asset {asset_id}"
        super().__init__(message)


class StoreError(MediaIngestError):
    """
    Raised when an object store operation fails.

    ``transient`` is True for 5xx responses, throttling and network/timeout
    failures, False for other 4xx responses and credential problems.
    """

    def __init__(
        self,
        message: str,
        transient: bool,
        status_code: Optional[int] = None,
        key: Optional[str] = None,
    ):
        self.transient = transient
        self.status_code = status_code
        self.key = key
        super().__init__(message)

    @property
    def permanent(self) -> bool:
        return not self.transient


class SourceMissingError(MediaIngestError):
    """Raised when the original object is missing or unreadable."""

    def __init__(self, key: str, message: str = None):
        self.key = key
        if message is None:
            message = f"Original object {key} is missing or unreadable"
        super().__init__(message)


class DecodeError(MediaIngestError):
    """Raised when the original bytes cannot be decoded as a supported image."""

    pass


class LeaseExpiredError(MediaIngestError):
    """Raised inside the worker when its lease on a job was lost to a reclaim."""

    def __init__(self, job_id, worker_id: str, message: str = None):
        self.job_id = job_id
        self.worker_id = worker_id
        if message is None:
            message = f"Worker {worker_id} no longer holds the lease on job {job_id}"
        super().__init__(message)


class RemoteHttpError(MediaIngestError):
    """Raised when an HTTP request to a remote media files API fails."""

    def __init__(self, status_code: int, message: str, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"HTTP {status_code}: {message}")


class JobNotFoundError(MediaIngestError):
    """Raised when a job is not found."""

    def __init__(self, job_id, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)
