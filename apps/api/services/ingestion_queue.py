"""Durable ingestion job queue backed by the relational store.

Jobs are claimed with a compare-and-set on (status, attempts) and hidden for
a visibility timeout while processing. A worker that dies mid-job leaves the
row in ``processing``; once ``next_visible_at`` passes, any worker may claim
it again. Jobs that used up ``max_attempts`` are dead-lettered as ``failed``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from models.ingestion_job import IngestionJob
from services.timeutils import utc_now

logger = logging.getLogger(__name__)

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
JOB_STATUSES = (QUEUED, PROCESSING, COMPLETED, FAILED)
CLAIM_SCAN_LIMIT = 10


def retry_backoff_seconds(attempts: int) -> int:
    """Exponential backoff after the given number of attempts, capped."""
    base = max(int(settings.INGESTION_RETRY_BASE_SECONDS), 1)
    cap = max(int(settings.INGESTION_RETRY_MAX_SECONDS), base)
    exponent = max(int(attempts) - 1, 0)
    return int(min(base * (2 ** min(exponent, 16)), cap))


async def enqueue_ingestion_job(
    db: AsyncSession,
    *,
    user_id: str,
    provider: str,
    source_url: str,
    content_item_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Tuple[IngestionJob, bool]:
    """Queue a media fetch; an existing live job for the same item and URL is reused."""
    existing_result = await db.execute(
        select(IngestionJob)
        .where(
            IngestionJob.user_id == user_id,
            IngestionJob.source_url == source_url,
            IngestionJob.content_item_id == content_item_id,
            IngestionJob.status != FAILED,
        )
        .limit(1)
    )
    existing = existing_result.scalar_one_or_none()
    if existing:
        return existing, False

    job = IngestionJob(
        id=str(uuid.uuid4()),
        user_id=user_id,
        provider=provider,
        source_url=source_url,
        content_item_id=content_item_id,
        status=QUEUED,
        attempts=0,
        max_attempts=int(max_attempts or settings.INGESTION_MAX_ATTEMPTS),
        next_visible_at=now or utc_now(),
    )
    db.add(job)
    if commit:
        await db.commit()
    else:
        await db.flush()
    return job, True


async def _dead_letter(db: AsyncSession, job: IngestionJob, now: datetime) -> bool:
    result = await db.execute(
        update(IngestionJob)
        .where(
            IngestionJob.id == job.id,
            IngestionJob.status == job.status,
            IngestionJob.attempts == job.attempts,
        )
        .values(
            status=FAILED,
            locked_by=None,
            error_code="attempts_exhausted",
            error_message=job.error_message or "Job exceeded its maximum attempts.",
            completed_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 1:
        logger.error(
            "Abandoned ingestion job %s after %s attempts (%s)",
            job.id,
            job.attempts,
            job.source_url,
        )
        return True
    return False


async def claim_next_job(
    db: AsyncSession,
    worker_id: str,
    now: Optional[datetime] = None,
) -> Optional[IngestionJob]:
    """Claim the oldest visible job, or None when nothing is claimable."""
    now = now or utc_now()
    visibility = timedelta(seconds=max(int(settings.INGESTION_VISIBILITY_TIMEOUT_SECONDS), 1))

    result = await db.execute(
        select(IngestionJob)
        .where(
            IngestionJob.status.in_((QUEUED, PROCESSING)),
            IngestionJob.next_visible_at <= now,
        )
        .order_by(IngestionJob.next_visible_at.asc(), IngestionJob.created_at.asc())
        .limit(CLAIM_SCAN_LIMIT)
    )
    candidates = list(result.scalars().all())

    for candidate in candidates:
        if int(candidate.attempts or 0) >= int(candidate.max_attempts or 1):
            await _dead_letter(db, candidate, now)
            continue

        if candidate.status == PROCESSING:
            logger.warning(
                "Reclaiming ingestion job %s after visibility timeout (previous worker %s)",
                candidate.id,
                candidate.locked_by,
            )

        claimed = await db.execute(
            update(IngestionJob)
            .where(
                IngestionJob.id == candidate.id,
                IngestionJob.status == candidate.status,
                IngestionJob.attempts == candidate.attempts,
            )
            .values(
                status=PROCESSING,
                attempts=IngestionJob.attempts + 1,
                locked_by=worker_id,
                next_visible_at=now + visibility,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claimed.rowcount != 1:
            continue
        await db.refresh(candidate)
        return candidate
    return None


async def complete_job(
    db: AsyncSession,
    job: IngestionJob,
    *,
    media_asset_id: Optional[str],
    now: Optional[datetime] = None,
) -> None:
    job.status = COMPLETED
    job.media_asset_id = media_asset_id
    job.locked_by = None
    job.error_code = None
    job.error_message = None
    job.completed_at = now or utc_now()
    await db.commit()


async def fail_job(
    db: AsyncSession,
    job: IngestionJob,
    *,
    error_code: str,
    error_message: str,
    retryable: bool,
    now: Optional[datetime] = None,
) -> None:
    """Schedule a retry with backoff, or dead-letter when not retryable or out of attempts."""
    now = now or utc_now()
    job.error_code = error_code
    job.error_message = str(error_message or "")[:1000]
    job.locked_by = None
    if retryable and int(job.attempts or 0) < int(job.max_attempts or 1):
        delay = retry_backoff_seconds(int(job.attempts or 1))
        job.status = QUEUED
        job.next_visible_at = now + timedelta(seconds=delay)
        logger.warning(
            "Ingestion job %s failed (attempt %s/%s, %s); retrying in %ss",
            job.id,
            job.attempts,
            job.max_attempts,
            error_code,
            delay,
        )
    else:
        job.status = FAILED
        job.completed_at = now
        logger.error(
            "Abandoned ingestion job %s after %s attempt(s): %s %s",
            job.id,
            job.attempts,
            error_code,
            job.error_message,
        )
    await db.commit()


async def requeue_stalled_ingestion_jobs(
    session_maker: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
) -> int:
    """Return expired ``processing`` jobs to the queue at startup (or fail them when exhausted)."""
    if session_maker is None:
        from database import async_session_maker as session_maker
    now = now or utc_now()
    async with session_maker() as db:
        result = await db.execute(
            select(IngestionJob).where(
                IngestionJob.status == PROCESSING,
                IngestionJob.next_visible_at <= now,
            )
        )
        jobs = result.scalars().all()
        for job in jobs:
            job.locked_by = None
            if int(job.attempts or 0) >= int(job.max_attempts or 1):
                job.status = FAILED
                job.error_code = "attempts_exhausted"
                job.error_message = "Ingestion was interrupted and no attempts remain."
                job.completed_at = now
            else:
                job.status = QUEUED
                job.next_visible_at = now
        if jobs:
            await db.commit()
        return len(jobs)


async def ingestion_queue_stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utc_now()
    counts = {status: 0 for status in JOB_STATUSES}
    result = await db.execute(
        select(IngestionJob.status, func.count(IngestionJob.id)).group_by(IngestionJob.status)
    )
    for status, count in result.all():
        counts[str(status)] = int(count)

    visible = await db.execute(
        select(func.count(IngestionJob.id)).where(
            IngestionJob.status.in_((QUEUED, PROCESSING)),
            IngestionJob.next_visible_at <= now,
        )
    )
    counts["claimable"] = int(visible.scalar() or 0)
    return counts


async def get_job_for_user(db: AsyncSession, job_id: str, user_id: str) -> Optional[IngestionJob]:
    result = await db.execute(
        select(IngestionJob).where(
            IngestionJob.id == job_id,
            IngestionJob.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()
