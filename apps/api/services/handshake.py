"""Authorization handshake: CSRF state, PKCE verifier/challenge and one-time state consumption."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Optional, Union

from config import settings
from services.connectors import BaseProviderAdapter, Provider, get_provider_adapter, parse_provider
from services.errors import AuthStateError
from services.state_store import StateStore
from services.timeutils import utc_now

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "pkce:"

AdapterResolver = Callable[[Provider], BaseProviderAdapter]


@dataclass(frozen=True)
class HandshakeStart:
    provider: str
    state: str
    authorization_url: str


@dataclass(frozen=True)
class HandshakeGrant:
    provider: str
    user_id: str
    verifier: Optional[str]
    created_at: Optional[str]


def generate_state() -> str:
    """256 bits of randomness, URL-safe."""
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    # token_urlsafe(64) yields 86 chars, inside the 43..128 range RFC 7636 allows.
    return secrets.token_urlsafe(64)


def code_challenge_for(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def state_key(state: str) -> str:
    return f"{STATE_KEY_PREFIX}{state}"


class HandshakeManager:
    """Issues and consumes authorization state entries held in the State Store."""

    def __init__(
        self,
        store: StateStore,
        adapter_resolver: Optional[AdapterResolver] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.store = store
        self.adapter_resolver = adapter_resolver or get_provider_adapter
        self.ttl_seconds = int(ttl_seconds or settings.OAUTH_STATE_TTL_SECONDS)

    async def begin(self, provider: Union[str, Provider], user_id: str) -> HandshakeStart:
        provider_key = parse_provider(provider)
        adapter = self.adapter_resolver(provider_key)
        adapter.ensure_configured()

        state = generate_state()
        verifier = generate_code_verifier() if adapter.uses_pkce else None
        challenge = code_challenge_for(verifier) if verifier else None
        authorization_url = adapter.authorization_url(state, code_challenge=challenge)

        await self.store.put(
            state_key(state),
            {
                "verifier": verifier,
                "user_id": user_id,
                "provider": provider_key.value,
                "created_at": utc_now().isoformat(),
            },
            self.ttl_seconds,
        )
        logger.info("Issued %s authorization state for user %s", provider_key.value, user_id)
        return HandshakeStart(provider=provider_key.value, state=state, authorization_url=authorization_url)

    async def complete(self, state: str, provider: Union[str, Provider, None] = None) -> HandshakeGrant:
        """Consume the state entry exactly once; the entry is gone afterwards whatever the outcome."""
        if not state:
            raise AuthStateError()
        entry = await self.store.take(state_key(state))
        if not entry or not entry.get("user_id"):
            raise AuthStateError()

        stored_provider = str(entry.get("provider") or "")
        if provider is not None and parse_provider(provider).value != stored_provider:
            logger.warning("Authorization state issued for %s presented to %s", stored_provider, provider)
            raise AuthStateError("Authorization state was issued for another provider.", reason="provider_mismatch")

        return HandshakeGrant(
            provider=stored_provider,
            user_id=str(entry["user_id"]),
            verifier=entry.get("verifier"),
            created_at=entry.get("created_at"),
        )

    async def purge_expired(self) -> int:
        return await self.store.purge_expired(STATE_KEY_PREFIX)

    async def pending_count(self) -> int:
        return await self.store.count(STATE_KEY_PREFIX)
