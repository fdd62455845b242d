"""Ingestion queue job model."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class IngestionJob(Base):
    """Durable "fetch and persist this media asset" job."""

    __tablename__ = "ingestion_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(String, nullable=False, index=True)
    source_url = Column(String, nullable=False)
    content_item_id = Column(String, ForeignKey("content_items.id"), nullable=True, index=True)
    status = Column(String, nullable=False, default="queued", index=True)  # queued, processing, completed, failed
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_visible_at = Column(DateTime(timezone=True), nullable=False, index=True)
    locked_by = Column(String, nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    media_asset_id = Column(String, ForeignKey("media_assets.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    media_asset = relationship("MediaAsset")
