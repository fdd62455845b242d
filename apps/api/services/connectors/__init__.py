"""Public provider adapter utilities."""

from services.connectors.base import BaseProviderAdapter
from services.connectors.providers import (
    ADAPTER_CLASSES,
    connector_capabilities,
    get_provider_adapter,
    parse_provider,
)
from services.connectors.types import (
    ConnectorUnavailableError,
    ContentPage,
    Provider,
    ProviderContentItem,
    ProviderCredential,
    ProviderIdentity,
)

__all__ = [
    "ADAPTER_CLASSES",
    "BaseProviderAdapter",
    "ConnectorUnavailableError",
    "ContentPage",
    "Provider",
    "ProviderContentItem",
    "ProviderCredential",
    "ProviderIdentity",
    "connector_capabilities",
    "get_provider_adapter",
    "parse_provider",
]
