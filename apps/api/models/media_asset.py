"""Content-addressed media asset model."""

from sqlalchemy import Boolean, Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class MediaAsset(Base):
    """Stored media bytes, unique by SHA-256 content hash."""

    __tablename__ = "media_assets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    content_hash = Column(String(64), unique=True, nullable=False, index=True)
    storage_path = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    first_source_url = Column(String, nullable=True)
    is_optimized = Column(Boolean, nullable=False, default=False)
    optimized_path = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    links = relationship("ContentMedia", back_populates="media_asset")
