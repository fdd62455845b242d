"""Media maintenance router: optimization, deduplication and ingestion job status."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.ingestion_job import IngestionJob
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.deduplication import deduplicate_user
from services.ingestion_queue import get_job_for_user
from services.media_optimizer import optimize_user_media

router = APIRouter()


class MediaMaintenanceRequest(BaseModel):
    user_id: Optional[str] = None


class OptimizeResponse(BaseModel):
    affected: int


class DeduplicateResponse(BaseModel):
    affected: int
    content_removed: int
    media_removed: int


class IngestionJobResponse(BaseModel):
    job_id: str
    provider: str
    source_url: str
    content_item_id: Optional[str] = None
    status: str
    attempts: int
    max_attempts: int
    next_visible_at: Optional[str] = None
    media_asset_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


def _serialize_job(job: IngestionJob) -> IngestionJobResponse:
    return IngestionJobResponse(
        job_id=job.id,
        provider=job.provider,
        source_url=job.source_url,
        content_item_id=job.content_item_id,
        status=job.status,
        attempts=int(job.attempts or 0),
        max_attempts=int(job.max_attempts or 3),
        next_visible_at=job.next_visible_at.isoformat() if job.next_visible_at else None,
        media_asset_id=job.media_asset_id,
        error_code=job.error_code,
        error_message=job.error_message,
        created_at=job.created_at.isoformat() if job.created_at else None,
        completed_at=job.completed_at.isoformat() if job.completed_at else None,
    )


@router.post("/optimize", response_model=OptimizeResponse)
async def optimize_media(
    request: Optional[MediaMaintenanceRequest] = None,
    _rate_limit: None = Depends(rate_limit("media_optimize", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Run the image optimization batch over the user's unprocessed assets."""
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id if request else None)
    affected = await optimize_user_media(db, scoped_user_id)
    return OptimizeResponse(affected=affected)


@router.post("/deduplicate", response_model=DeduplicateResponse)
async def deduplicate_media(
    request: Optional[MediaMaintenanceRequest] = None,
    _rate_limit: None = Depends(rate_limit("media_deduplicate", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Run the deduplication sweep for the user."""
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id if request else None)
    report = await deduplicate_user(db, scoped_user_id)
    return DeduplicateResponse(
        affected=report.affected,
        content_removed=report.content_removed,
        media_removed=report.media_removed,
    )


@router.get("/jobs/{job_id}", response_model=IngestionJobResponse)
async def get_ingestion_job(
    job_id: str,
    user_id: Optional[str] = None,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Get ingestion job status for the current user."""
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    job = await get_job_for_user(db, job_id, scoped_user_id)
    if not job:
        raise HTTPException(status_code=404, detail="Ingestion job not found")
    return _serialize_job(job)
