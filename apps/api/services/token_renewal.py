"""Token renewal sweep: refresh credentials that expire within the renewal window."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select

from config import settings
from models.linked_account import LinkedAccount
from services.connectors import BaseProviderAdapter, Provider, get_provider_adapter, parse_provider
from services.errors import IngestionCoreError, UnsupportedOperation
from services.linked_accounts import apply_refreshed_credential, list_accounts_due_for_renewal, refresh_token_for
from services.timeutils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class RenewalReport:
    scanned: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_account_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "refreshed": self.refreshed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


async def _record_failure(
    session_maker: async_sessionmaker,
    account_id: str,
    message: str,
) -> None:
    async with session_maker() as db:
        result = await db.execute(select(LinkedAccount).where(LinkedAccount.id == account_id))
        account = result.scalar_one_or_none()
        if account is None:
            return
        account.last_refresh_error = message[:500]
        await db.commit()


async def _renew_one(
    session_maker: async_sessionmaker,
    account_id: str,
    adapter_resolver: Callable[[Provider], BaseProviderAdapter],
    now: datetime,
) -> str:
    """Refresh a single account in its own session. Returns refreshed or skipped."""
    async with session_maker() as db:
        result = await db.execute(select(LinkedAccount).where(LinkedAccount.id == account_id))
        account = result.scalar_one_or_none()
        if account is None:
            return "skipped"

        adapter = adapter_resolver(parse_provider(account.provider))
        refresh_token = refresh_token_for(account)
        if not adapter.supports_refresh or not refresh_token:
            logger.debug(
                "Skipping renewal for %s account %s (no rotating refresh token)",
                account.provider,
                account.id,
            )
            return "skipped"

        try:
            credential = await adapter.refresh_credential(refresh_token)
        except UnsupportedOperation:
            logger.debug("Provider %s does not support refresh; skipping %s", account.provider, account.id)
            return "skipped"

        apply_refreshed_credential(account, credential, now)
        await db.commit()
        return "refreshed"


async def run_token_renewal_sweep(
    now: Optional[datetime] = None,
    *,
    session_maker: Optional[async_sessionmaker] = None,
    adapter_resolver: Optional[Callable[[Provider], BaseProviderAdapter]] = None,
    window: Optional[timedelta] = None,
) -> RenewalReport:
    """Refresh every credential expiring inside the window; one failure never aborts the batch."""
    if session_maker is None:
        from database import async_session_maker as session_maker
    now = now or utc_now()
    adapter_resolver = adapter_resolver or get_provider_adapter
    window = window or timedelta(hours=settings.TOKEN_RENEWAL_WINDOW_HOURS)

    async with session_maker() as db:
        due = await list_accounts_due_for_renewal(db, window=window, now=now)
        due_ids = [(account.id, account.provider) for account in due]

    report = RenewalReport(scanned=len(due_ids))
    for account_id, provider in due_ids:
        try:
            outcome = await _renew_one(session_maker, account_id, adapter_resolver, now)
        except (IngestionCoreError, ValueError) as exc:
            report.failed += 1
            report.failed_account_ids.append(account_id)
            logger.warning("Token renewal failed for %s account %s: %s", provider, account_id, exc)
            await _record_failure(session_maker, account_id, str(exc))
            continue
        except Exception as exc:
            report.failed += 1
            report.failed_account_ids.append(account_id)
            logger.exception("Unexpected token renewal failure for %s account %s", provider, account_id)
            await _record_failure(session_maker, account_id, f"{type(exc).__name__}: {exc}")
            continue

        if outcome == "refreshed":
            report.refreshed += 1
        else:
            report.skipped += 1

    logger.info(
        "Token renewal sweep: scanned=%s refreshed=%s skipped=%s failed=%s",
        report.scanned,
        report.refreshed,
        report.skipped,
        report.failed,
    )
    return report
