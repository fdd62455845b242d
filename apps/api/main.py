"""
Lifeline Ingest - FastAPI Backend
OAuth account linking, credential renewal and content ingestion service.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, oauth, media
from routers.rate_limit import close_rate_limit_store
from services.content_sync import run_content_sync_for_all_accounts
from services.handshake import HandshakeManager
from services.ingestion_queue import requeue_stalled_ingestion_jobs
from services.ingestion_worker import IngestionWorkerPool
from services.maintenance_queue import enqueue_maintenance_task
from services.state_store import build_state_store
from services.token_renewal import run_token_renewal_sweep

logger = logging.getLogger(__name__)


async def _periodic(
    label: str,
    interval_seconds: float,
    tick: Callable[[], Awaitable[Optional[str]]],
) -> None:
    """Run ``tick`` every interval; a failed tick is logged and the loop continues."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            summary = await tick()
            if summary:
                print(f"⏱️ {label}: {summary}")
        except Exception as exc:
            logger.exception("%s tick failed", label)
            print(f"⚠️ {label} tick failed: {exc}")


async def _token_renewal_tick() -> str:
    report = await run_token_renewal_sweep()
    return (
        f"scanned={report.scanned} refreshed={report.refreshed} "
        f"skipped={report.skipped} failed={report.failed}"
    )


def _state_cleanup_tick(handshake: HandshakeManager) -> Callable[[], Awaitable[Optional[str]]]:
    async def _tick() -> Optional[str]:
        removed = await handshake.purge_expired()
        return f"removed={removed}" if removed else None

    return _tick


async def _content_sync_tick() -> str:
    results = await run_content_sync_for_all_accounts()
    items = sum(result.items_upserted for result in results)
    jobs = sum(result.media_jobs_enqueued for result in results)
    return f"accounts={len(results)} items={items} media_jobs={jobs}"


def _maintenance_tick(task_path: str, label: str) -> Callable[[], Awaitable[Optional[str]]]:
    async def _tick() -> Optional[str]:
        job = await asyncio.to_thread(enqueue_maintenance_task, task_path, label=label)
        return f"dispatched job {job.id}" if job else None

    return _tick


def _schedule_background_tasks(handshake: HandshakeManager) -> List[asyncio.Task]:
    tasks: List[asyncio.Task] = []

    def _add(label: str, interval_seconds: float, tick: Callable[[], Awaitable[Optional[str]]]) -> None:
        if interval_seconds <= 0:
            return
        tasks.append(asyncio.create_task(_periodic(label, interval_seconds, tick), name=label))
        print(f"📅 {label} loop enabled (every {int(interval_seconds // 60)} min).")

    _add("Token renewal", int(settings.TOKEN_RENEWAL_INTERVAL_MINUTES) * 60, _token_renewal_tick)
    _add("State cleanup", int(settings.STATE_CLEANUP_INTERVAL_MINUTES) * 60, _state_cleanup_tick(handshake))
    _add("Content sync", int(settings.CONTENT_SYNC_INTERVAL_MINUTES) * 60, _content_sync_tick)

    daily = int(settings.DATABASE_BACKUP_INTERVAL_HOURS) * 3600
    weekly = int(settings.MEDIA_BACKUP_INTERVAL_HOURS) * 3600
    if settings.DATABASE_BACKUP_TASK:
        _add("Database backup", daily, _maintenance_tick(settings.DATABASE_BACKUP_TASK, "database_backup"))
    if settings.MEDIA_BACKUP_TASK:
        _add("Media backup", weekly, _maintenance_tick(settings.MEDIA_BACKUP_TASK, "media_backup"))
    if settings.BACKUP_CLEANUP_TASK:
        _add("Backup cleanup", daily, _maintenance_tick(settings.BACKUP_CLEANUP_TASK, "backup_cleanup"))
    return tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logging.basicConfig(level=settings.LOG_LEVEL)
    print("🚀 Starting Lifeline Ingest API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        requeued = await requeue_stalled_ingestion_jobs()
        if requeued:
            print(f"♻️ Requeued {requeued} stalled ingestion jobs after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled ingestion recovery skipped: {exc}")

    state_store = build_state_store()
    app.state.state_store = state_store
    handshake = HandshakeManager(state_store)
    background_tasks = _schedule_background_tasks(handshake)

    worker_pool = None
    if settings.INGESTION_INPROCESS_WORKERS:
        worker_pool = IngestionWorkerPool()
        worker_pool.start()
        print(f"🧵 In-process ingestion workers started (concurrency={worker_pool.concurrency}).")
    yield
    # Shutdown
    for task in background_tasks:
        task.cancel()
    for task in background_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    if worker_pool is not None:
        await worker_pool.stop(timeout=float(settings.INGESTION_VISIBILITY_TIMEOUT_SECONDS))
        print("🧵 Ingestion workers drained.")
    await state_store.close()
    await close_rate_limit_store()
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Lifeline Ingest API",
    description="Link social and email accounts via OAuth and ingest their content",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(oauth.router, prefix="/oauth", tags=["OAuth"])
app.include_router(media.router, prefix="/media", tags=["Media"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Lifeline Ingest API",
        "version": "0.1.0",
        "status": "running"
    }
