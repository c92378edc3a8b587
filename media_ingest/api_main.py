"""FastAPI application and CLI entrypoint for the media files API."""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from media_ingest.completion import CompletionHandler
from media_ingest.config import MediaIngestConfig
from media_ingest.fastapi_router import create_files_router
from media_ingest.object_store import ObjectStoreClient
from media_ingest.presign import PresignService
from media_ingest.queue import JobQueue
from media_ingest.store import AssetStore, JobStore
from media_ingest.worker_main import create_db_pool, setup_logging

DEFAULT_PORT = 4060


def create_app(
    config: Optional[MediaIngestConfig] = None,
    asset_store=None,
    job_store=None,
    object_store: Optional[ObjectStoreClient] = None,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    """
    Build the API application.

    When ``asset_store`` and ``job_store`` are both given (e.g. the in-memory
    stores) no database pool is opened; otherwise a pool is created from
    ``config.db_dsn`` on startup and closed on shutdown.
    """
    logger = logger or logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_config = config or MediaIngestConfig.from_env()
        db_pool = None
        assets, jobs = asset_store, job_store
        if assets is None or jobs is None:
            db_pool = await create_db_pool(app_config)
            assets, jobs = AssetStore(db_pool), JobStore(db_pool)

        store_client = object_store or ObjectStoreClient(app_config.object_store, logger=logger)
        job_queue = JobQueue(app_config.job_queue, jobs, assets, logger)

        app.state.presign_service = PresignService(app_config, assets, store_client, logger)
        app.state.completion_handler = CompletionHandler(assets, job_queue, logger)
        logger.info("Media files API ready")
        try:
            yield
        finally:
            if db_pool is not None:
                await db_pool.close()

    app = FastAPI(title="Media Ingest", lifespan=lifespan)
    app.include_router(
        create_files_router(
            presign_service_factory=lambda: app.state.presign_service,
            completion_handler_factory=lambda: app.state.completion_handler,
        )
    )

    @app.get("/api/health")
    async def health():
        return {"ok": True}

    return app


def main():
    """Main entrypoint for the API server."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Media ingest files API")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help=f"Port (default: {DEFAULT_PORT})"
    )

    args = parser.parse_args()

    try:
        config = MediaIngestConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    uvicorn.run(create_app(config, logger=logger), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
