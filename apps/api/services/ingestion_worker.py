"""Asyncio worker pool draining the ingestion queue."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from typing import List, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from services.errors import BlockedMediaUrlError, MediaDownloadError, StorageError
from services.ingestion_queue import claim_next_job, complete_job, fail_job
from services.media_materializer import materialize_media
from services.media_storage import LocalMediaStorage

logger = logging.getLogger(__name__)


def default_worker_prefix() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class IngestionWorkerPool:
    """N concurrent workers, each looping claim -> materialize -> complete/fail."""

    def __init__(
        self,
        *,
        concurrency: Optional[int] = None,
        session_maker: Optional[async_sessionmaker] = None,
        storage: Optional[LocalMediaStorage] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: Optional[float] = None,
        worker_prefix: Optional[str] = None,
    ) -> None:
        if session_maker is None:
            from database import async_session_maker as session_maker
        self.concurrency = max(int(concurrency or settings.INGESTION_WORKER_CONCURRENCY), 1)
        self.session_maker = session_maker
        self.storage = storage or LocalMediaStorage()
        self.http_client = http_client
        self.poll_interval = float(poll_interval if poll_interval is not None else settings.INGESTION_POLL_INTERVAL_SECONDS)
        self.worker_prefix = worker_prefix or default_worker_prefix()
        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @staticmethod
    async def _reset_session(db, job) -> None:
        await db.rollback()
        await db.refresh(job)

    async def process_one(self, worker_id: str) -> bool:
        """Claim and run a single job. Returns False when the queue had nothing visible."""
        async with self.session_maker() as db:
            job = await claim_next_job(db, worker_id)
            if job is None:
                return False

            try:
                result = await materialize_media(
                    db,
                    user_id=job.user_id,
                    source_url=job.source_url,
                    content_item_id=job.content_item_id,
                    storage=self.storage,
                    http_client=self.http_client,
                )
            except MediaDownloadError as exc:
                await self._reset_session(db, job)
                await fail_job(
                    db,
                    job,
                    error_code="blocked_url" if isinstance(exc, BlockedMediaUrlError) else "download_failed",
                    error_message=str(exc),
                    retryable=exc.retryable,
                )
                return True
            except StorageError as exc:
                await self._reset_session(db, job)
                await fail_job(db, job, error_code="storage_failed", error_message=str(exc), retryable=True)
                return True
            except Exception as exc:
                await self._reset_session(db, job)
                logger.exception("Unexpected failure in ingestion job %s", job.id)
                await fail_job(
                    db,
                    job,
                    error_code="unexpected_error",
                    error_message=f"{type(exc).__name__}: {exc}",
                    retryable=True,
                )
                return True

            await complete_job(db, job, media_asset_id=result.asset.id)
            return True

    async def drain(self, worker_id: Optional[str] = None, max_jobs: Optional[int] = None) -> int:
        """Process visible jobs until none remain; returns the number handled."""
        worker_id = worker_id or f"{self.worker_prefix}:drain"
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not await self.process_one(worker_id):
                break
            processed += 1
        return processed

    async def _worker_loop(self, index: int) -> None:
        worker_id = f"{self.worker_prefix}:{index}"
        logger.info("Ingestion worker %s started", worker_id)
        while not self._stopping.is_set():
            try:
                handled = await self.process_one(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Claim or bookkeeping failed (e.g. database unavailable); back off and keep polling.
                logger.exception("Ingestion worker %s iteration failed", worker_id)
                handled = False
            if handled:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Ingestion worker %s stopped", worker_id)

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._worker_loop(index), name=f"ingestion-worker-{index}")
            for index in range(self.concurrency)
        ]

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop claiming new jobs and let in-flight ones finish; cancel after ``timeout``."""
        self._stopping.set()
        if not self._tasks:
            return
        _done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
