"""Shared provider adapter plumbing: uniform contract and HTTP helpers."""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from config import provider_app_credentials, settings
from services.connectors.types import (
    ConnectorUnavailableError,
    ContentPage,
    Provider,
    ProviderCredential,
    ProviderIdentity,
)
from services.errors import ProviderError, UnsupportedOperation

logger = logging.getLogger(__name__)

EMAIL_CATEGORIES = (
    ("flight", ("flight", "boarding pass")),
    ("hotel", ("hotel", "reservation")),
    ("receipt", ("receipt", "invoice")),
    ("event", ("ticket", "event")),
)


def categorize_email(subject: Optional[str]) -> str:
    lowered = str(subject or "").lower()
    for category, needles in EMAIL_CATEGORIES:
        if any(needle in lowered for needle in needles):
            return category
    return "other"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 provider timestamps ("Z" and "+0000" offsets included)."""
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    elif len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit() and ":" not in text[-5:]:
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def basic_auth_header(client_id: str, client_secret: str) -> str:
    token = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
    return f"Basic {token}"


class BaseProviderAdapter(ABC):
    """Uniform OAuth + content contract implemented once per provider."""

    provider: Provider
    uses_pkce: bool = False
    supports_refresh: bool = True

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        configured_id, configured_secret, configured_redirect = provider_app_credentials(self.provider.value)
        self.client_id = client_id if client_id is not None else configured_id
        self.client_secret = client_secret if client_secret is not None else configured_secret
        self.redirect_uri = redirect_uri if redirect_uri is not None else configured_redirect
        self.timeout_seconds = float(timeout_seconds or settings.PROVIDER_HTTP_TIMEOUT_SECONDS)
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def ensure_configured(self) -> None:
        if not self.is_configured:
            raise ConnectorUnavailableError(
                f"{self.provider.value.capitalize()} OAuth connector is not configured. "
                f"Set {self.provider.value.upper()}_CLIENT_ID and {self.provider.value.upper()}_CLIENT_SECRET."
            )

    @abstractmethod
    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderCredential:
        raise NotImplementedError

    async def refresh_credential(self, refresh_token: str) -> ProviderCredential:
        raise UnsupportedOperation(f"{self.provider.value} does not issue rotating refresh tokens")

    @abstractmethod
    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        raise NotImplementedError

    @abstractmethod
    async def fetch_content_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> ContentPage:
        raise NotImplementedError

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Perform one provider call; any non-2xx, network or JSON failure becomes ProviderError."""
        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, timeout=self.timeout_seconds, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(self.provider.value, f"request to {url} failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            try:
                payload: Any = response.json()
            except ValueError:
                payload = response.text[:500]
            raise ProviderError(
                self.provider.value,
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                self.provider.value,
                f"{method} {url} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ProviderError(self.provider.value, f"{method} {url} returned unexpected JSON", status_code=response.status_code)
        return body

    def _credential_from_token_response(
        self,
        body: Dict[str, Any],
        *,
        provider_account_id: Optional[str] = None,
    ) -> ProviderCredential:
        access_token = str(body.get("access_token") or "").strip()
        if not access_token:
            raise ProviderError(self.provider.value, "token response missing access_token", payload=body)
        expires_in = body.get("expires_in")
        try:
            expires_value = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_value = None
        return ProviderCredential(
            access_token=access_token,
            refresh_token=(str(body["refresh_token"]) if body.get("refresh_token") else None),
            expires_in=expires_value,
            scope=(str(body["scope"]) if body.get("scope") else None),
            provider_account_id=provider_account_id,
        )

    @staticmethod
    def _bearer(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
