"""Ingestion worker process entrypoint."""

import asyncio
import logging
import signal

from config import settings
from database import engine
from services.ingestion_queue import requeue_stalled_ingestion_jobs
from services.ingestion_worker import IngestionWorkerPool

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    requeued = await requeue_stalled_ingestion_jobs()
    if requeued:
        logger.info("Requeued %s stalled ingestion jobs", requeued)

    pool = IngestionWorkerPool()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    pool.start()
    logger.info("Ingestion worker pool running with %s workers", pool.concurrency)
    await stop_event.wait()
    logger.info("Shutdown signal received; draining in-flight jobs")
    await pool.stop(timeout=float(settings.INGESTION_VISIBILITY_TIMEOUT_SECONDS))
    await engine.dispose()


def main():
    logging.basicConfig(level=settings.LOG_LEVEL)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
