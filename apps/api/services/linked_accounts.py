"""Credential Store: encrypted per-(user, provider) OAuth credentials."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.linked_account import LinkedAccount
from models.user import User
from services.connectors.types import ProviderCredential, ProviderIdentity
from services.crypto import decrypt_optional, decrypt_token, encrypt_token
from services.timeutils import utc_now

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "users.invalid"


async def ensure_user(db: AsyncSession, user_id: str, email: Optional[str] = None) -> User:
    """Return the user row, creating a minimal one when the CRUD layer has not synced it yet."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    candidate_email = str(email or "").strip().lower()
    if candidate_email:
        taken = await db.execute(select(User.id).where(User.email == candidate_email))
        if taken.scalar_one_or_none():
            candidate_email = ""
    user = User(id=user_id, email=candidate_email or f"{user_id}@{PLACEHOLDER_EMAIL_DOMAIN}")
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one()
    return user


async def get_linked_account(db: AsyncSession, user_id: str, provider: str) -> Optional[LinkedAccount]:
    result = await db.execute(
        select(LinkedAccount).where(
            LinkedAccount.user_id == user_id,
            LinkedAccount.provider == provider,
        )
    )
    return result.scalar_one_or_none()


def _apply_link(
    account: LinkedAccount,
    identity: ProviderIdentity,
    credential: ProviderCredential,
    now: datetime,
) -> None:
    account.provider_account_id = credential.provider_account_id or identity.external_id
    account.display_name = identity.display_name or account.display_name
    account.email = identity.email or account.email
    account.access_token_encrypted = encrypt_token(credential.access_token)
    if credential.refresh_token:
        account.refresh_token_encrypted = encrypt_token(credential.refresh_token)
    account.expires_at = credential.expires_at(now)
    account.scope = credential.scope or account.scope
    account.last_refresh_error = None


async def upsert_linked_account(
    db: AsyncSession,
    *,
    user_id: str,
    provider: str,
    identity: ProviderIdentity,
    credential: ProviderCredential,
    now: Optional[datetime] = None,
) -> LinkedAccount:
    """
    Insert or update the (user, provider) credential row and commit.

    Two callbacks racing for the same pair both reach the insert; the loser
    hits the unique constraint and is replayed as an update.
    """
    now = now or utc_now()
    account = await get_linked_account(db, user_id, provider)
    if account:
        _apply_link(account, identity, credential, now)
        await db.commit()
        return account

    account = LinkedAccount(id=str(uuid.uuid4()), user_id=user_id, provider=provider)
    _apply_link(account, identity, credential, now)
    db.add(account)
    try:
        await db.commit()
        return account
    except IntegrityError:
        await db.rollback()
        logger.info("Concurrent link for %s/%s detected; updating existing row", user_id, provider)

    account = await get_linked_account(db, user_id, provider)
    if account is None:
        raise RuntimeError(f"Linked account for {user_id}/{provider} vanished during upsert")
    _apply_link(account, identity, credential, now)
    await db.commit()
    return account


async def list_accounts_due_for_renewal(
    db: AsyncSession,
    *,
    window: timedelta,
    now: Optional[datetime] = None,
) -> List[LinkedAccount]:
    now = now or utc_now()
    result = await db.execute(
        select(LinkedAccount)
        .where(
            LinkedAccount.expires_at.is_not(None),
            LinkedAccount.expires_at < now + window,
        )
        .order_by(LinkedAccount.expires_at.asc())
    )
    return list(result.scalars().all())


def apply_refreshed_credential(
    account: LinkedAccount,
    credential: ProviderCredential,
    now: Optional[datetime] = None,
) -> None:
    """Rotate stored secrets; the old refresh token survives when the provider does not return one."""
    now = now or utc_now()
    account.access_token_encrypted = encrypt_token(credential.access_token)
    if credential.refresh_token:
        account.refresh_token_encrypted = encrypt_token(credential.refresh_token)
    # No expires_in means a non-expiring token: cleared so renewal stops picking it up.
    account.expires_at = credential.expires_at(now)
    if credential.scope:
        account.scope = credential.scope
    account.last_refreshed_at = now
    account.last_refresh_error = None


def access_token_for(account: LinkedAccount) -> str:
    return decrypt_token(account.access_token_encrypted)


def refresh_token_for(account: LinkedAccount) -> Optional[str]:
    return decrypt_optional(account.refresh_token_encrypted)
