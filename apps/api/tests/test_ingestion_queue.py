from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.future import select

from models.ingestion_job import IngestionJob
from models.user import User
from services.ingestion_queue import (
    claim_next_job,
    enqueue_ingestion_job,
    fail_job,
    ingestion_queue_stats,
    requeue_stalled_ingestion_jobs,
    retry_backoff_seconds,
)
from services.timeutils import as_utc, utc_now


QUEUE_USER_ID = "queue-user"


async def _enqueue(session_maker, url="https://cdn.example.com/a.jpg", now=None, max_attempts=3):
    async with session_maker() as db:
        if not (await db.execute(select(User).where(User.id == QUEUE_USER_ID))).scalar_one_or_none():
            db.add(User(id=QUEUE_USER_ID, email="queue@example.com"))
            await db.commit()
        job, _created = await enqueue_ingestion_job(
            db,
            user_id=QUEUE_USER_ID,
            provider="twitter",
            source_url=url,
            max_attempts=max_attempts,
            now=now,
        )
        return job.id


async def _load(session_maker, job_id) -> IngestionJob:
    async with session_maker() as db:
        return (await db.execute(select(IngestionJob).where(IngestionJob.id == job_id))).scalar_one()


@pytest.mark.asyncio
async def test_enqueue_reuses_live_job_for_same_url(session_maker):
    first = await _enqueue(session_maker)
    second = await _enqueue(session_maker)
    assert first == second


@pytest.mark.asyncio
async def test_claim_hides_job_until_visibility_timeout(session_maker):
    now = utc_now()
    job_id = await _enqueue(session_maker, now=now)

    async with session_maker() as db:
        claimed = await claim_next_job(db, "worker-a", now=now)
    assert claimed.id == job_id
    assert claimed.status == "processing"
    assert claimed.attempts == 1
    assert claimed.locked_by == "worker-a"

    async with session_maker() as db:
        assert await claim_next_job(db, "worker-b", now=now + timedelta(seconds=10)) is None


@pytest.mark.asyncio
async def test_crashed_worker_job_is_reclaimed_after_timeout(session_maker):
    now = utc_now()
    job_id = await _enqueue(session_maker, now=now)
    async with session_maker() as db:
        await claim_next_job(db, "worker-crashed", now=now)

    later = now + timedelta(seconds=301)
    with patch("services.ingestion_queue.settings.INGESTION_VISIBILITY_TIMEOUT_SECONDS", 300):
        async with session_maker() as db:
            reclaimed = await claim_next_job(db, "worker-b", now=later)

    assert reclaimed.id == job_id
    assert reclaimed.attempts == 2
    assert reclaimed.locked_by == "worker-b"


@pytest.mark.asyncio
async def test_job_is_dead_lettered_after_max_attempts(session_maker):
    now = utc_now()
    job_id = await _enqueue(session_maker, now=now, max_attempts=2)

    async with session_maker() as db:
        job = await claim_next_job(db, "w", now=now)
        await fail_job(db, job, error_code="download_failed", error_message="503", retryable=True, now=now)
    job = await _load(session_maker, job_id)
    assert job.status == "queued"
    assert as_utc(job.next_visible_at) == now + timedelta(seconds=retry_backoff_seconds(1))

    retry_at = now + timedelta(seconds=retry_backoff_seconds(1))
    async with session_maker() as db:
        job = await claim_next_job(db, "w", now=retry_at)
        assert job.attempts == 2
        await fail_job(db, job, error_code="download_failed", error_message="503", retryable=True, now=retry_at)

    job = await _load(session_maker, job_id)
    assert job.status == "failed"
    assert job.completed_at is not None
    async with session_maker() as db:
        assert await claim_next_job(db, "w", now=retry_at + timedelta(hours=1)) is None


@pytest.mark.asyncio
async def test_expired_job_without_attempts_left_is_dead_lettered_on_claim(session_maker):
    now = utc_now()
    job_id = await _enqueue(session_maker, now=now, max_attempts=1)
    async with session_maker() as db:
        await claim_next_job(db, "worker-crashed", now=now)

    async with session_maker() as db:
        assert await claim_next_job(db, "worker-b", now=now + timedelta(hours=1)) is None

    job = await _load(session_maker, job_id)
    assert job.status == "failed"
    assert job.error_code == "attempts_exhausted"


@pytest.mark.asyncio
async def test_non_retryable_failure_fails_immediately(session_maker):
    now = utc_now()
    job_id = await _enqueue(session_maker, now=now)
    async with session_maker() as db:
        job = await claim_next_job(db, "w", now=now)
        await fail_job(db, job, error_code="blocked_url", error_message="private host", retryable=False, now=now)

    job = await _load(session_maker, job_id)
    assert job.status == "failed"
    assert job.attempts == 1


def test_retry_backoff_is_exponential_and_capped():
    with (
        patch("services.ingestion_queue.settings.INGESTION_RETRY_BASE_SECONDS", 2),
        patch("services.ingestion_queue.settings.INGESTION_RETRY_MAX_SECONDS", 300),
    ):
        assert [retry_backoff_seconds(n) for n in (1, 2, 3, 4)] == [2, 4, 8, 16]
        assert retry_backoff_seconds(20) == 300


@pytest.mark.asyncio
async def test_startup_requeue_and_stats(session_maker):
    now = utc_now()
    job_id = await _enqueue(session_maker, now=now)
    await _enqueue(session_maker, url="https://cdn.example.com/b.jpg", now=now + timedelta(seconds=1))
    async with session_maker() as db:
        await claim_next_job(db, "w", now=now)

    async with session_maker() as db:
        stats = await ingestion_queue_stats(db, now=now)
    assert stats["processing"] == 1
    assert stats["queued"] == 1

    requeued = await requeue_stalled_ingestion_jobs(session_maker, now=now + timedelta(hours=1))
    assert requeued == 1
    job = await _load(session_maker, job_id)
    assert job.status == "queued"
    assert job.locked_by is None
