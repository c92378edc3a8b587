"""
ObjectStoreClient - signed URLs and server-side object I/O for S3/MinIO.
"""

import logging
import os
from typing import Dict, FrozenSet, Iterable, List, Optional
from urllib.parse import quote

import boto3
from botocore.auth import S3SigV4QueryAuth
from botocore.awsrequest import AWSRequest
from botocore.config import Config
from botocore.credentials import Credentials
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
)

from media_ingest.config import ObjectStoreConfig
from media_ingest.errors import StoreError

# Integrity headers S3 SDKs inject on their own. A signature covering one of
# these is unusable by a browser that never sends it.
CHECKSUM_HEADERS: FrozenSet[str] = frozenset(
    {
        "content-md5",
        "x-amz-sdk-checksum-algorithm",
        "x-amz-checksum-algorithm",
        "x-amz-checksum-crc32",
        "x-amz-checksum-crc32c",
        "x-amz-checksum-crc64nvme",
        "x-amz-checksum-sha1",
        "x-amz-checksum-sha256",
        "x-amz-checksum-type",
    }
)
CHECKSUM_HEADER_PREFIXES = ("x-amz-checksum-", "x-amz-sdk-checksum-")

THROTTLING_ERROR_CODES = frozenset(
    {"SlowDown", "Throttling", "ThrottlingException", "RequestTimeout", "RequestLimitExceeded"}
)


def is_checksum_header(name: str) -> bool:
    """True for any header of the checksum/integrity family."""
    lname = name.lower()
    return lname in CHECKSUM_HEADERS or lname.startswith(CHECKSUM_HEADER_PREFIXES)


class PresignedPut:
    """A signed upload capability for one key."""

    def __init__(
        self,
        url: str,
        key: str,
        required_headers: Dict[str, str],
        signed_headers: List[str],
        canonical_request: str,
        expires_in: int,
    ):
        self.url = url
        self.key = key
        self.required_headers = required_headers
        self.signed_headers = signed_headers
        self.canonical_request = canonical_request
        self.expires_in = expires_in


class _RecordingQueryAuth(S3SigV4QueryAuth):
    """Query-string SigV4 signer that keeps the canonical request it signed."""

    last_canonical_request: Optional[str] = None

    def canonical_request(self, request):
        self.last_canonical_request = super().canonical_request(request)
        return self.last_canonical_request


class ObjectStoreClient:
    """
    Wrapper for S3/MinIO operations.

    The API process only calls ``issue_put_url`` and ``issue_get_url``;
    ``fetch_object`` and ``put_object`` are for the worker.
    """

    def __init__(self, config: ObjectStoreConfig, logger: Optional[logging.Logger] = None):
        """
        Initialize object store client.

        Args:
            config: Object store configuration
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        self._session = boto3.Session(
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
        )
        self._client = self._session.client(
            "s3",
            endpoint_url=config.endpoint,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path" if config.endpoint else "virtual"},
            ),
        )

    def issue_put_url(
        self,
        key: str,
        content_type: Optional[str],
        expires_in: Optional[int] = None,
        excluded_headers: Optional[Iterable[str]] = None,
    ) -> PresignedPut:
        """
        Sign a direct-upload PUT URL for ``key``.

        The signature covers exactly the headers returned in
        ``required_headers`` (plus ``host``). Headers named in
        ``excluded_headers`` (default: the configured set) and every
        checksum-family header are kept out of both.

        Args:
            key: Object key to reserve
            content_type: MIME type the uploader must send
            expires_in: URL lifetime in seconds (default from config, 60)
            excluded_headers: Signing policy; header names never signed

        Returns:
            PresignedPut with url, key, required_headers and signing details
        """
        expires_in = expires_in or self.config.put_url_expires_seconds
        excluded = (
            frozenset(h.lower() for h in excluded_headers)
            if excluded_headers is not None
            else self.config.excluded_headers
        )
        if "content-type" in excluded:
            raise ValueError("content-type is always signed and cannot be excluded")

        headers = {"Content-Type": content_type or "application/octet-stream"}
        if self.config.require_sse:
            headers["x-amz-server-side-encryption"] = "AES256"
        required_headers = {
            name: value
            for name, value in headers.items()
            if name.lower() not in excluded and not is_checksum_header(name)
        }

        credentials = self._signing_credentials()
        request = AWSRequest(
            method="PUT", url=self._object_url(key), headers=dict(required_headers)
        )
        signer = _RecordingQueryAuth(
            credentials, "s3", self.config.region, expires=expires_in
        )
        signer.add_auth(request)
        signed_headers = signer.signed_headers(signer.headers_to_sign(request)).split(";")

        return PresignedPut(
            url=request.url,
            key=key,
            required_headers=required_headers,
            signed_headers=signed_headers,
            canonical_request=signer.last_canonical_request,
            expires_in=expires_in,
        )

    def issue_get_url(
        self,
        key: str,
        expires_in: Optional[int] = None,
        download_name: Optional[str] = None,
    ) -> str:
        """
        Sign a GET URL for ``key``.

        If ``download_name`` is given the response carries an attachment
        content-disposition so browsers save under that filename.
        """
        params = {"Bucket": self.config.bucket, "Key": key}
        if download_name:
            safe_name = os.path.basename(download_name).replace('"', "")
            params["ResponseContentDisposition"] = f'attachment; filename="{safe_name}"'

        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=expires_in or self.config.get_url_expires_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise to_store_error(e, "presign get", key) from e

    def fetch_object(self, key: str) -> bytes:
        """Download an object's bytes."""
        try:
            response = self._client.get_object(Bucket=self.config.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise to_store_error(e, "fetch", key) from e

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        """Upload bytes to ``key``, overwriting any existing object."""
        extra = {}
        if self.config.require_sse:
            extra["ServerSideEncryption"] = "AES256"
        try:
            self._client.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                **extra,
            )
        except (BotoCoreError, ClientError) as e:
            raise to_store_error(e, "put", key) from e
        self.logger.debug(f"Stored {len(data)} bytes at {key}")

    def _object_url(self, key: str) -> str:
        quoted_key = quote(key, safe="/~")
        if self.config.endpoint:
            endpoint = self.config.endpoint.rstrip("/")
            return f"{endpoint}/{self.config.bucket}/{quoted_key}"
        host = f"s3.{self.config.region}.amazonaws.com"
        # A dotted bucket name would not match the *.s3 wildcard certificate
        if "." in self.config.bucket:
            return f"https://{host}/{self.config.bucket}/{quoted_key}"
        return f"https://{self.config.bucket}.{host}/{quoted_key}"

    def _signing_credentials(self):
        if self.config.access_key and self.config.secret_key:
            return Credentials(self.config.access_key, self.config.secret_key)
        credentials = self._session.get_credentials()
        if credentials is None:
            raise StoreError("No object store credentials available", transient=False)
        return credentials.get_frozen_credentials()


def to_store_error(exc: Exception, operation: str, key: Optional[str] = None) -> StoreError:
    """
    Classify a botocore failure.

    5xx, 408/429, throttling codes and connection/timeout errors are
    transient; everything else (other 4xx, missing credentials, bad
    parameters) is permanent.
    """
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        code = exc.response.get("Error", {}).get("Code", "")
        if status is None and code in ("NoSuchKey", "NotFound", "404"):
            status = 404
        transient = (
            (status is not None and (status >= 500 or status in (408, 429)))
            or code in THROTTLING_ERROR_CODES
        )
        return StoreError(
            f"Object store {operation} failed for {key}: {code or status}",
            transient=transient,
            status_code=status,
            key=key,
        )

    if isinstance(exc, (HTTPClientError, BotoConnectionError)):
        return StoreError(
            f"Object store {operation} failed for {key}: {exc}",
            transient=True,
            key=key,
        )

    if isinstance(exc, NoCredentialsError):
        return StoreError(
            f"Object store {operation} failed: no credentials", transient=False, key=key
        )

    return StoreError(
        f"Object store {operation} failed for {key}: {exc}", transient=False, key=key
    )
