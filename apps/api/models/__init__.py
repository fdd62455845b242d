"""Models package."""

from .user import User
from .linked_account import LinkedAccount
from .content_item import ContentItem
from .media_asset import MediaAsset
from .content_media import ContentMedia
from .ingestion_job import IngestionJob
