"""CLI entrypoint and programmatic interface for the thumbnail worker."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import asyncpg

from media_ingest.config import MediaIngestConfig
from media_ingest.object_store import ObjectStoreClient
from media_ingest.worker import run_worker_loop


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: MediaIngestConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=1, max_size=5)


async def run_worker(
    config: Optional[MediaIngestConfig] = None,
    db_pool=None,
    object_store: Optional[ObjectStoreClient] = None,
    logger: Optional[logging.Logger] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    worker_id: Optional[str] = None,
):
    """
    Run the worker programmatically.

    Args:
        config: MediaIngestConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        object_store: ObjectStoreClient. If None, will create from config.
        logger: Logger instance. If None, will create default logger.
        shutdown_event: Optional asyncio.Event for graceful shutdown.
        worker_id: Lease owner name for this process.

    Example:
        ```python
        from media_ingest.worker_main import run_worker
        import asyncio

        asyncio.run(run_worker())
        ```
    """
    if config is None:
        config = MediaIngestConfig.from_env()

    if logger is None:
        logger = logging.getLogger(__name__)

    if object_store is None:
        object_store = ObjectStoreClient(config.object_store, logger=logger)

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    try:
        await run_worker_loop(
            config=config,
            db_pool=db_pool,
            object_store=object_store,
            logger=logger,
            worker_id=worker_id,
            shutdown_event=shutdown_event,
        )
    finally:
        if not db_pool_provided and db_pool:
            await db_pool.close()


def main():
    """Main entrypoint for worker."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Media ingest thumbnail worker")
    parser.add_argument(
        "--worker-id",
        default=None,
        help="Lease owner name (default: <hostname>-<pid>-<random>)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of jobs processed in parallel (default: from environment, 1)",
    )

    args = parser.parse_args()

    try:
        config = MediaIngestConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    if args.concurrency is not None:
        config.worker.concurrency = max(1, args.concurrency)

    shutdown_event = asyncio.Event()

    async def run():
        """Async main function."""
        loop = asyncio.get_running_loop()

        def request_shutdown(signum):
            logger.info(f"Received signal {signum}, shutting down...")
            shutdown_event.set()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, request_shutdown, signum)

        try:
            logger.info("Starting thumbnail worker...")
            await run_worker(
                config=config,
                logger=logger,
                shutdown_event=shutdown_event,
                worker_id=args.worker_id,
            )
        except Exception as e:
            logger.error(f"Fatal error in worker: {e}", exc_info=True)
            sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
