"""ContentItem model for posts and email metadata pulled from providers."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class ContentItem(Base):
    """Normalized provider item. (provider, provider_item_id) is kept unique by upsert and the dedupe sweep."""

    __tablename__ = "content_items"
    __table_args__ = (
        Index("ix_content_items_provider_item", "provider", "provider_item_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(String, nullable=False, index=True)
    provider_item_id = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="post")
    text = Column(Text, nullable=True)
    media_urls = Column(JSON, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=True)
    engagement_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="content_items")
    media_links = relationship("ContentMedia", back_populates="content_item")
