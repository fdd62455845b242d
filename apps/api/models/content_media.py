"""Link between a content item and the media asset its bytes resolved to."""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class ContentMedia(Base):
    """User-scoped, MediaAsset-backed media record of a content item."""

    __tablename__ = "content_media"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    content_item_id = Column(String, ForeignKey("content_items.id"), nullable=False, index=True)
    media_asset_id = Column(String, ForeignKey("media_assets.id"), nullable=False, index=True)
    content_hash = Column(String(64), nullable=False, index=True)
    source_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    content_item = relationship("ContentItem", back_populates="media_links")
    media_asset = relationship("MediaAsset", back_populates="links")
