"""Dispatch of backup tasks to the external maintenance worker (Redis/RQ)."""

from __future__ import annotations

import logging
from typing import Optional

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from config import settings

logger = logging.getLogger(__name__)


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_maintenance_queue() -> Queue:
    """Return the queue the external backup worker listens on."""
    return Queue(
        name=settings.MAINTENANCE_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=3600,
    )


def enqueue_maintenance_task(task_path: Optional[str], *, label: str) -> Optional[Job]:
    """Enqueue a backup task by dotted path; an unset path disables the task."""
    task_path = str(task_path or "").strip()
    if not task_path:
        logger.debug("Maintenance task %s has no task path configured; skipping", label)
        return None
    queue = get_maintenance_queue()
    job = queue.enqueue(
        task_path,
        retry=Retry(max=2, interval=[300, 900]),
        job_timeout=3600,
        result_ttl=86400,
        failure_ttl=7 * 86400,
        description=label,
    )
    logger.info("Dispatched maintenance task %s as job %s", label, job.id)
    return job
