"""Database schema DDL for media assets and thumbnail jobs."""

ASSETS_TABLE_DDL = """
CREATE TABLE media_assets (
  id               UUID PRIMARY KEY,
  owner_id         TEXT NOT NULL,
  original_key     TEXT NOT NULL UNIQUE,
  content_type     TEXT NOT NULL,

  status           TEXT NOT NULL CHECK (status IN (
                     'pending_upload', 'uploaded', 'queued',
                     'processing', 'ready', 'failed'
                   )),
  variants         JSONB NOT NULL DEFAULT '{}'::jsonb,
  last_error       TEXT,

  created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX idx_media_assets_owner
ON media_assets (owner_id, created_at DESC);

CREATE INDEX idx_media_assets_status
ON media_assets (status);
"""

JOBS_TABLE_DDL = """
CREATE TABLE thumbnail_jobs (
  id               UUID PRIMARY KEY,
  asset_id         UUID NOT NULL REFERENCES media_assets (id) ON DELETE CASCADE,

  status           TEXT NOT NULL CHECK (status IN ('pending', 'dead')),
  attempt          INT NOT NULL DEFAULT 0,

  lease_owner      TEXT,
  lease_expires_at TIMESTAMPTZ,
  next_run_at      TIMESTAMPTZ NOT NULL,

  last_error       JSONB,

  created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

-- At most one claimable job per asset
CREATE UNIQUE INDEX idx_thumbnail_jobs_one_pending_per_asset
ON thumbnail_jobs (asset_id)
WHERE status = 'pending';

-- Claim order
CREATE INDEX idx_thumbnail_jobs_pending_next_run
ON thumbnail_jobs (next_run_at, created_at)
WHERE status = 'pending';

CREATE INDEX idx_thumbnail_jobs_dead
ON thumbnail_jobs (updated_at)
WHERE status = 'dead';
"""

SCHEMA_DDL = ASSETS_TABLE_DDL + JOBS_TABLE_DDL
