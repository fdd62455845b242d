"""Provider adapter registry."""

from __future__ import annotations

from typing import Dict, Optional, Type, Union

import httpx

from services.connectors.base import BaseProviderAdapter
from services.connectors.google import GmailAdapter
from services.connectors.linkedin import LinkedInAdapter
from services.connectors.meta import FacebookAdapter, InstagramAdapter
from services.connectors.microsoft import OutlookAdapter
from services.connectors.twitter import TwitterAdapter
from services.connectors.types import Provider

ADAPTER_CLASSES: Dict[Provider, Type[BaseProviderAdapter]] = {
    Provider.INSTAGRAM: InstagramAdapter,
    Provider.FACEBOOK: FacebookAdapter,
    Provider.TWITTER: TwitterAdapter,
    Provider.LINKEDIN: LinkedInAdapter,
    Provider.GMAIL: GmailAdapter,
    Provider.OUTLOOK: OutlookAdapter,
}


def parse_provider(value: Union[str, Provider]) -> Provider:
    """Normalize a provider key; raises ValueError for anything outside the closed set."""
    if isinstance(value, Provider):
        return value
    return Provider(str(value or "").strip().lower())


def get_provider_adapter(
    provider: Union[str, Provider],
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BaseProviderAdapter:
    adapter_cls = ADAPTER_CLASSES[parse_provider(provider)]
    return adapter_cls(http_client=http_client)


def connector_capabilities() -> Dict[str, Dict[str, bool]]:
    capabilities: Dict[str, Dict[str, bool]] = {}
    for provider, adapter_cls in ADAPTER_CLASSES.items():
        adapter = adapter_cls()
        capabilities[provider.value] = {
            "configured": adapter.is_configured,
            "uses_pkce": adapter_cls.uses_pkce,
            "supports_refresh": adapter_cls.supports_refresh,
        }
    return capabilities
