"""Configuration for the media ingestion pipeline."""

import json
import os
from typing import Dict, Iterable, List, Optional

DEFAULT_ALLOWED_CONTENT_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
)

DEFAULT_VARIANT_SIZES = {"thumb": 128, "medium": 512}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid integer in {name}: {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"Invalid number in {name}: {raw!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class ObjectStoreConfig:
    """Connection and signing settings for the S3-compatible object store."""

    def __init__(
        self,
        region: str,
        bucket: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        put_url_expires_seconds: int = 60,
        get_url_expires_seconds: int = 300,
        require_sse: bool = False,
        excluded_headers: Optional[Iterable[str]] = None,
    ):
        self.region = region
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.endpoint = endpoint
        self.put_url_expires_seconds = put_url_expires_seconds
        self.get_url_expires_seconds = get_url_expires_seconds
        self.require_sse = require_sse
        self.excluded_headers = frozenset(h.lower() for h in (excluded_headers or ()))
        if "content-type" in self.excluded_headers:
            raise ValueError("content-type is always signed and cannot be excluded")

    @classmethod
    def from_env(cls) -> "ObjectStoreConfig":
        """Create object store config from environment variables."""
        region = os.getenv("MEDIA_INGEST_S3_REGION")
        if not region:
            raise ValueError("MEDIA_INGEST_S3_REGION environment variable is required")

        bucket = os.getenv("MEDIA_INGEST_S3_BUCKET")
        if not bucket:
            raise ValueError("MEDIA_INGEST_S3_BUCKET environment variable is required")

        excluded_headers = _env_list("MEDIA_INGEST_EXCLUDED_HEADERS")
        if any(h.lower() == "content-type" for h in excluded_headers):
            raise ValueError("MEDIA_INGEST_EXCLUDED_HEADERS cannot include content-type")

        return cls(
            region=region,
            bucket=bucket,
            access_key=os.getenv("MEDIA_INGEST_S3_ACCESS_KEY") or None,
            secret_key=os.getenv("MEDIA_INGEST_S3_SECRET_KEY") or None,
            endpoint=os.getenv("MEDIA_INGEST_S3_ENDPOINT") or None,
            put_url_expires_seconds=_env_int("MEDIA_INGEST_PUT_URL_EXPIRES_SECONDS", 60),
            get_url_expires_seconds=_env_int("MEDIA_INGEST_GET_URL_EXPIRES_SECONDS", 300),
            require_sse=_env_bool("MEDIA_INGEST_REQUIRE_SSE"),
            excluded_headers=excluded_headers,
        )


class JobQueueConfig:
    """Retry, backoff and lease settings for the thumbnail job queue."""

    def __init__(
        self,
        max_attempts: int = 5,
        lease_duration_seconds: float = 300,
        backoff_base_seconds: float = 5,
        backoff_cap_seconds: float = 600,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if lease_duration_seconds <= 0:
            raise ValueError("lease_duration_seconds must be positive")
        self.max_attempts = max_attempts
        self.lease_duration_seconds = lease_duration_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_cap_seconds = backoff_cap_seconds

    @classmethod
    def from_env(cls) -> "JobQueueConfig":
        """Create job queue config from environment variables."""
        return cls(
            max_attempts=_env_int("MEDIA_INGEST_MAX_ATTEMPTS", 5),
            lease_duration_seconds=_env_float("MEDIA_INGEST_LEASE_DURATION_SECONDS", 300),
            backoff_base_seconds=_env_float("MEDIA_INGEST_BACKOFF_BASE_SECONDS", 5),
            backoff_cap_seconds=_env_float("MEDIA_INGEST_BACKOFF_CAP_SECONDS", 600),
        )


class WorkerConfig:
    """Settings for the thumbnail worker process."""

    def __init__(
        self,
        variant_sizes: Optional[Dict[str, int]] = None,
        poll_interval_seconds: float = 2,
        max_idle_poll_interval_seconds: float = 30,
        concurrency: int = 1,
        jpeg_quality: int = 85,
    ):
        self.variant_sizes = dict(variant_sizes or DEFAULT_VARIANT_SIZES)
        for label, size in self.variant_sizes.items():
            if not isinstance(size, int) or size <= 0:
                raise ValueError(f"Variant {label!r} must have a positive integer size")
        self.poll_interval_seconds = poll_interval_seconds
        self.max_idle_poll_interval_seconds = max(
            max_idle_poll_interval_seconds, poll_interval_seconds
        )
        self.concurrency = max(1, concurrency)
        self.jpeg_quality = jpeg_quality

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Create worker config from environment variables."""
        variant_sizes = None
        variant_sizes_str = os.getenv("MEDIA_INGEST_VARIANT_SIZES")
        if variant_sizes_str:
            try:
                variant_sizes = json.loads(variant_sizes_str)
            except json.JSONDecodeError as e:
                raise ValueError(
                    f"Invalid JSON in MEDIA_INGEST_VARIANT_SIZES: {e}"
                ) from e
            if not isinstance(variant_sizes, dict):
                raise ValueError("MEDIA_INGEST_VARIANT_SIZES must be a JSON object")

        return cls(
            variant_sizes=variant_sizes,
            poll_interval_seconds=_env_float("MEDIA_INGEST_POLL_INTERVAL_SECONDS", 2),
            max_idle_poll_interval_seconds=_env_float(
                "MEDIA_INGEST_MAX_IDLE_POLL_INTERVAL_SECONDS", 30
            ),
            concurrency=_env_int("MEDIA_INGEST_WORKER_CONCURRENCY", 1),
            jpeg_quality=_env_int("MEDIA_INGEST_JPEG_QUALITY", 85),
        )


class MediaIngestConfig:
    """Top-level configuration object passed to the API and worker processes."""

    def __init__(
        self,
        db_dsn: str,
        object_store: ObjectStoreConfig,
        job_queue: Optional[JobQueueConfig] = None,
        worker: Optional[WorkerConfig] = None,
        allowed_content_types: Optional[Iterable[str]] = None,
    ):
        self.db_dsn = db_dsn
        self.object_store = object_store
        self.job_queue = job_queue or JobQueueConfig()
        self.worker = worker or WorkerConfig()
        self.allowed_content_types = frozenset(
            ct.lower() for ct in (allowed_content_types or DEFAULT_ALLOWED_CONTENT_TYPES)
        )

    @classmethod
    def from_env(cls) -> "MediaIngestConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("MEDIA_INGEST_DB_DSN")
        if not db_dsn:
            raise ValueError("MEDIA_INGEST_DB_DSN environment variable is required")

        return cls(
            db_dsn=db_dsn,
            object_store=ObjectStoreConfig.from_env(),
            job_queue=JobQueueConfig.from_env(),
            worker=WorkerConfig.from_env(),
            allowed_content_types=_env_list("MEDIA_INGEST_ALLOWED_CONTENT_TYPES") or None,
        )

    def is_content_type_allowed(self, content_type: Optional[str]) -> bool:
        """Check a declared MIME type against the upload allow-list."""
        if not content_type:
            return False
        base = content_type.split(";", 1)[0].strip().lower()
        return base in self.allowed_content_types
