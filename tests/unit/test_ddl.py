"""Unit tests for DDL module."""

from media_ingest.ddl import ASSETS_TABLE_DDL, JOBS_TABLE_DDL, SCHEMA_DDL
from media_ingest.models import AssetStatus, JobStatus


def test_schema_contains_both_tables():
    assert "CREATE TABLE media_assets" in SCHEMA_DDL
    assert "CREATE TABLE thumbnail_jobs" in SCHEMA_DDL
    # Assets must exist before the job foreign key
    assert SCHEMA_DDL.index("media_assets (") < SCHEMA_DDL.index("thumbnail_jobs (")


def test_assets_table_allows_every_status():
    """Test that the status CHECK lists each asset status."""
    for status in AssetStatus:
        assert f"'{status.value}'" in ASSETS_TABLE_DDL


def test_jobs_table_allows_every_status():
    for status in JobStatus:
        assert f"'{status.value}'" in JOBS_TABLE_DDL


def test_jobs_table_contains_lease_columns():
    for column in ("attempt", "lease_owner", "lease_expires_at", "next_run_at", "last_error"):
        assert column in JOBS_TABLE_DDL


def test_one_pending_job_per_asset_index():
    """Test the partial unique index backing enqueue_if_absent."""
    assert "CREATE UNIQUE INDEX idx_thumbnail_jobs_one_pending_per_asset" in JOBS_TABLE_DDL
    assert "WHERE status = 'pending'" in JOBS_TABLE_DDL
