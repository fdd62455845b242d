"""Connector provider contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Provider(str, Enum):
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    GMAIL = "gmail"
    OUTLOOK = "outlook"


class ConnectorUnavailableError(RuntimeError):
    """Raised when OAuth connector is not configured or disabled."""


@dataclass(frozen=True)
class ProviderCredential:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    provider_account_id: Optional[str] = None

    def expires_at(self, now: datetime) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=max(int(self.expires_in), 0))


@dataclass(frozen=True)
class ProviderIdentity:
    external_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class ProviderContentItem:
    provider_item_id: str
    kind: str
    text: Optional[str] = None
    media_urls: Tuple[str, ...] = ()
    timestamp: Optional[datetime] = None
    engagement_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContentPage:
    items: List[ProviderContentItem]
    next_cursor: Optional[str] = None
