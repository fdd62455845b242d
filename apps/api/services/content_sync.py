"""Content sync: page through a linked account's provider content into ContentItem rows."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from config import settings
from models.content_item import ContentItem
from models.linked_account import LinkedAccount
from services.connectors import BaseProviderAdapter, Provider, ProviderContentItem, get_provider_adapter, parse_provider
from services.errors import IngestionCoreError, ProviderError
from services.ingestion_queue import enqueue_ingestion_job
from services.linked_accounts import access_token_for
from services.timeutils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    account_id: str
    provider: str
    pages_fetched: int = 0
    items_upserted: int = 0
    media_jobs_enqueued: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings


async def upsert_content_item(
    db: AsyncSession,
    *,
    user_id: str,
    provider: str,
    item: ProviderContentItem,
) -> ContentItem:
    """Insert or refresh one provider item keyed by (provider, provider_item_id) within the user."""
    result = await db.execute(
        select(ContentItem)
        .where(
            ContentItem.user_id == user_id,
            ContentItem.provider == provider,
            ContentItem.provider_item_id == item.provider_item_id,
        )
        .order_by(ContentItem.created_at.asc())
    )
    row = result.scalars().first()
    if row is None:
        row = ContentItem(
            id=str(uuid.uuid4()),
            user_id=user_id,
            provider=provider,
            provider_item_id=item.provider_item_id,
        )
        db.add(row)
    row.kind = item.kind
    row.text = item.text
    row.media_urls = list(item.media_urls)
    row.metadata_json = dict(item.metadata or {})
    row.timestamp = item.timestamp
    row.engagement_count = int(item.engagement_count or 0)
    await db.flush()
    return row


async def _persist_page(
    db: AsyncSession,
    account: LinkedAccount,
    items: List[ProviderContentItem],
    result: SyncResult,
) -> None:
    for item in items:
        row = await upsert_content_item(db, user_id=account.user_id, provider=account.provider, item=item)
        result.items_upserted += 1
        for url in item.media_urls:
            _job, created = await enqueue_ingestion_job(
                db,
                user_id=account.user_id,
                provider=account.provider,
                source_url=url,
                content_item_id=row.id,
                commit=False,
            )
            if created:
                result.media_jobs_enqueued += 1
    await db.commit()


async def sync_account_content(
    db: AsyncSession,
    account: LinkedAccount,
    *,
    adapter: Optional[BaseProviderAdapter] = None,
    max_pages: Optional[int] = None,
) -> SyncResult:
    """
    Fetch up to ``max_pages`` of content for one account.

    Never raises: provider, storage and queue failures are reported as
    warnings on the result. An authorization failure is retried once with
    the credential reloaded from the store, since the renewal sweep may
    have rotated it mid-fetch.
    """
    result = SyncResult(account_id=account.id, provider=account.provider)
    max_pages = max(int(max_pages or settings.CONTENT_SYNC_MAX_PAGES), 1)
    try:
        adapter = adapter or get_provider_adapter(account.provider)
        access_token = access_token_for(account)
    except (IngestionCoreError, ValueError) as exc:
        result.warnings.append(f"credential unavailable: {exc}")
        return result

    cursor: Optional[str] = None
    auth_retry_used = False
    while result.pages_fetched < max_pages:
        try:
            page = await adapter.fetch_content_page(
                access_token,
                cursor=cursor,
                external_id=account.provider_account_id,
            )
        except ProviderError as exc:
            if exc.is_auth_failure and not auth_retry_used:
                auth_retry_used = True
                try:
                    await db.refresh(account)
                    access_token = access_token_for(account)
                except (SQLAlchemyError, IngestionCoreError) as reload_exc:
                    result.warnings.append(f"credential reload failed: {reload_exc}")
                    break
                logger.info("Retrying %s content fetch for %s with reloaded credential", account.provider, account.id)
                continue
            logger.warning("Content fetch failed for %s account %s: %s", account.provider, account.id, exc)
            result.warnings.append(f"content fetch failed: {exc}")
            break

        result.pages_fetched += 1
        try:
            await _persist_page(db, account, page.items, result)
        except (SQLAlchemyError, IngestionCoreError) as exc:
            await db.rollback()
            logger.warning("Persisting %s content for %s failed: %s", account.provider, account.id, exc)
            result.warnings.append(f"content persistence failed: {exc}")
            break

        cursor = page.next_cursor
        if not cursor:
            break

    try:
        await db.refresh(account)
        account.last_synced_at = utc_now()
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        result.warnings.append(f"could not record sync time: {exc}")
    return result


async def run_content_sync_for_all_accounts(
    *,
    session_maker: Optional[async_sessionmaker] = None,
    adapter_resolver: Optional[Callable[[Provider], BaseProviderAdapter]] = None,
    max_pages: Optional[int] = None,
) -> List[SyncResult]:
    if session_maker is None:
        from database import async_session_maker as session_maker
    adapter_resolver = adapter_resolver or get_provider_adapter

    async with session_maker() as db:
        id_rows = await db.execute(select(LinkedAccount.id))
        account_ids = [row[0] for row in id_rows.all()]

    results: List[SyncResult] = []
    for account_id in account_ids:
        async with session_maker() as db:
            account_result = await db.execute(select(LinkedAccount).where(LinkedAccount.id == account_id))
            account = account_result.scalar_one_or_none()
            if account is None:
                continue
            try:
                adapter = adapter_resolver(parse_provider(account.provider))
            except ValueError as exc:
                logger.warning("Skipping account %s with unknown provider: %s", account_id, exc)
                continue
            results.append(await sync_account_content(db, account, adapter=adapter, max_pages=max_pages))

    warned = sum(1 for item in results if item.warnings)
    logger.info("Content sync finished for %s account(s); %s with warnings", len(results), warned)
    return results
