"""OAuth callback orchestration: state -> code exchange -> identity -> credential store -> initial sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.connectors import parse_provider
from services.content_sync import sync_account_content
from services.handshake import HandshakeManager
from services.linked_accounts import ensure_user, upsert_linked_account

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    user_id: str
    provider: str
    account_id: str
    provider_account_id: str
    items_synced: int = 0
    media_jobs_enqueued: int = 0
    warnings: List[str] = field(default_factory=list)


async def complete_authorization(
    db: AsyncSession,
    *,
    provider: str,
    code: str,
    state: str,
    handshake: HandshakeManager,
    initial_sync_pages: Optional[int] = None,
) -> LinkResult:
    """
    Link a provider account from an authorization callback.

    AuthStateError and ProviderError from the handshake, code exchange or
    identity lookup propagate to the caller. The initial content fetch is a
    side effect: its failures come back as warnings on a successful link.
    """
    provider_key = parse_provider(provider)
    grant = await handshake.complete(state, provider_key)
    adapter = handshake.adapter_resolver(provider_key)

    credential = await adapter.exchange_code(code, code_verifier=grant.verifier)
    identity = await adapter.fetch_identity(credential.access_token)

    await ensure_user(db, grant.user_id, identity.email)
    account = await upsert_linked_account(
        db,
        user_id=grant.user_id,
        provider=provider_key.value,
        identity=identity,
        credential=credential,
    )
    logger.info("Linked %s account %s for user %s", provider_key.value, account.provider_account_id, grant.user_id)

    sync = await sync_account_content(
        db,
        account,
        adapter=adapter,
        max_pages=initial_sync_pages or settings.INITIAL_SYNC_MAX_PAGES,
    )
    for warning in sync.warnings:
        logger.warning("Initial %s sync for user %s: %s", provider_key.value, grant.user_id, warning)

    return LinkResult(
        user_id=grant.user_id,
        provider=provider_key.value,
        account_id=account.id,
        provider_account_id=account.provider_account_id,
        items_synced=sync.items_upserted,
        media_jobs_enqueued=sync.media_jobs_enqueued,
        warnings=list(sync.warnings),
    )
