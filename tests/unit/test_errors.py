"""Unit tests for error classes."""

from uuid import uuid4

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


def test_all_errors_share_base():
    """Test that every library error derives from MediaIngestError."""
    errors = [
        InvalidContentTypeError("text/plain"),
        UnknownAssetError("a1"),
        NotReadyError("a1", "queued"),
        VariantNotFoundError("a1", "huge"),
        StoreError("boom", transient=True),
        SourceMissingError("u1/a1/original"),
        DecodeError("bad"),
        LeaseExpiredError(uuid4(), "w1"),
        RemoteHttpError(500, "oops"),
    ]
    for error in errors:
        assert isinstance(error, MediaIngestError)


def test_invalid_content_type_error():
    error = InvalidContentTypeError("text/plain")

    assert error.content_type == "text/plain"
    assert "text/plain" in str(error)


def test_not_ready_error_carries_status():
    error = NotReadyError("a1", "processing")

    assert error.asset_id == "a1"
    assert error.status == "processing"
    assert "processing" in str(error)


def test_variant_not_found_error():
    error = VariantNotFoundError("a1", "huge")

    assert error.variant == "huge"
    assert "huge" in str(error)


def test_store_error_transient_flag():
    """Test that transient and permanent are complementary."""
    transient = StoreError("503", transient=True, status_code=503, key="k")
    permanent = StoreError("403", transient=False, status_code=403)

    assert transient.transient and not transient.permanent
    assert permanent.permanent and not permanent.transient
    assert transient.status_code == 503
    assert transient.key == "k"


def test_source_missing_error_custom_message():
    error = SourceMissingError("u1/a1/original", "gone")

    assert error.key == "u1/a1/original"
    assert str(error) == "gone"


def test_remote_http_error():
    """Test RemoteHttpError formatting."""
    error = RemoteHttpError(409, "Not ready", response_body='{"detail": "x"}')

    assert error.status_code == 409
    assert error.response_body == '{"detail": "x"}'
    assert str(error) == "HTTP 409: Not ready"
