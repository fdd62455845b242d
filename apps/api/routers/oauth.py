"""OAuth authorization initiation and callback endpoints."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.connectors import (
    BaseProviderAdapter,
    ConnectorUnavailableError,
    Provider,
    get_provider_adapter,
    parse_provider,
)
from services.errors import AuthStateError, IngestionCoreError, ProviderError
from services.handshake import HandshakeManager
from services.oauth_flow import complete_authorization
from services.state_store import StateStore, build_state_store

logger = logging.getLogger(__name__)

router = APIRouter()

RESTART_AUTHORIZATION_MESSAGE = "Invalid or expired authorization state. Please restart authorization."
AUTHENTICATION_FAILED_MESSAGE = "Failed to complete authentication"


class InitiateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auth_url: str = Field(serialization_alias="authUrl")
    provider: str


class CallbackResponse(BaseModel):
    success: bool
    message: str
    user_id: str
    provider: str
    account_id: str
    items_synced: int = 0
    media_jobs_enqueued: int = 0
    warnings: List[str] = Field(default_factory=list)


def get_state_store(request: Request) -> StateStore:
    """Process-wide State Store created in the lifespan; built lazily otherwise."""
    store = getattr(request.app.state, "state_store", None)
    if store is None:
        store = build_state_store()
        request.app.state.state_store = store
    return store


def get_adapter_resolver() -> Callable[[Provider], BaseProviderAdapter]:
    return get_provider_adapter


def get_handshake_manager(
    store: StateStore = Depends(get_state_store),
    adapter_resolver: Callable[[Provider], BaseProviderAdapter] = Depends(get_adapter_resolver),
) -> HandshakeManager:
    return HandshakeManager(store, adapter_resolver)


def _provider_or_404(provider: str) -> Provider:
    try:
        return parse_provider(provider)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}") from exc


@router.get(
    "/{provider}/initiate",
    response_model=InitiateResponse,
    response_model_by_alias=True,
)
async def initiate_authorization(
    provider: str,
    _rate_limit: None = Depends(rate_limit("oauth_initiate", limit=30, window_seconds=600)),
    auth: AuthContext = Depends(get_auth_context),
    handshake: HandshakeManager = Depends(get_handshake_manager),
):
    """Start an authorization handshake and return the provider consent URL."""
    provider_key = _provider_or_404(provider)
    try:
        start = await handshake.begin(provider_key, auth.user_id)
    except ConnectorUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return InitiateResponse(auth_url=start.authorization_url, provider=start.provider)


@router.get("/{provider}/callback", response_model=CallbackResponse)
async def authorization_callback(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    _rate_limit: None = Depends(rate_limit("oauth_callback", limit=60, window_seconds=600)),
    handshake: HandshakeManager = Depends(get_handshake_manager),
    db: AsyncSession = Depends(get_db),
):
    """Consume the state, exchange the code and link the provider account."""
    provider_key = _provider_or_404(provider)
    if error:
        # Consume the state so a denied consent cannot be replayed.
        if state:
            try:
                await handshake.complete(state, provider_key)
            except AuthStateError:
                pass
        logger.info("Provider %s denied authorization: %s %s", provider_key.value, error, error_description or "")
        raise HTTPException(status_code=400, detail=f"Authorization was denied by {provider_key.value}.")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state parameter.")

    try:
        result = await complete_authorization(
            db,
            provider=provider_key.value,
            code=code,
            state=state,
            handshake=handshake,
        )
    except AuthStateError as exc:
        logger.info("Rejected %s callback: %s", provider_key.value, exc.reason)
        raise HTTPException(status_code=400, detail=RESTART_AUTHORIZATION_MESSAGE) from exc
    except ConnectorUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ProviderError as exc:
        logger.warning("OAuth callback for %s failed at provider: %s", provider_key.value, exc)
        raise HTTPException(status_code=500, detail=AUTHENTICATION_FAILED_MESSAGE) from exc
    except IngestionCoreError as exc:
        logger.exception("OAuth callback for %s failed", provider_key.value)
        raise HTTPException(status_code=500, detail=AUTHENTICATION_FAILED_MESSAGE) from exc

    return CallbackResponse(
        success=True,
        message=f"{provider_key.value.capitalize()} account linked.",
        user_id=result.user_id,
        provider=result.provider,
        account_id=result.account_id,
        items_synced=result.items_synced,
        media_jobs_enqueued=result.media_jobs_enqueued,
        warnings=result.warnings,
    )
