"""Direct-to-object-store media uploads with background thumbnail generation."""

from media_ingest.completion import CompletionHandler
from media_ingest.config import (
    JobQueueConfig,
    MediaIngestConfig,
    ObjectStoreConfig,
    WorkerConfig,
)
from media_ingest.ddl import SCHEMA_DDL
from media_ingest.errors import (
    DecodeError,
    InvalidContentTypeError,
    LeaseExpiredError,
    MediaIngestError,
    NotReadyError,
    RemoteHttpError,
    SourceMissingError,
    StoreError,
    UnknownAssetError,
    VariantNotFoundError,
)
from media_ingest.http_client import MediaFilesHttpClient
from media_ingest.memory_store import InMemoryAssetStore, InMemoryJobStore
from media_ingest.models import Asset, AssetStatus, Job, JobStatus, Variant
from media_ingest.object_store import ObjectStoreClient, PresignedPut
from media_ingest.presign import PresignService, UploadTicket
from media_ingest.queue import JobQueue
from media_ingest.store import AssetStore, JobStore
from media_ingest.thumbnails import ThumbnailGenerator
from media_ingest.worker import ThumbnailWorker, run_worker_loop

__version__ = "0.1.0"

__all__ = [
    "CompletionHandler",
    "JobQueueConfig",
    "MediaIngestConfig",
    "ObjectStoreConfig",
    "WorkerConfig",
    "SCHEMA_DDL",
    "DecodeError",
    "InvalidContentTypeError",
    "LeaseExpiredError",
    "MediaIngestError",
    "NotReadyError",
    "RemoteHttpError",
    "SourceMissingError",
    "StoreError",
    "UnknownAssetError",
    "VariantNotFoundError",
    "MediaFilesHttpClient",
    "InMemoryAssetStore",
    "InMemoryJobStore",
    "Asset",
    "AssetStatus",
    "Job",
    "JobStatus",
    "Variant",
    "ObjectStoreClient",
    "PresignedPut",
    "PresignService",
    "UploadTicket",
    "JobQueue",
    "AssetStore",
    "JobStore",
    "ThumbnailGenerator",
    "ThumbnailWorker",
    "run_worker_loop",
]
