"""Deduplication sweep: batch reconciliation of duplicate content and media records per user."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.content_item import ContentItem
from models.content_media import ContentMedia
from models.ingestion_job import IngestionJob

logger = logging.getLogger(__name__)


@dataclass
class DedupReport:
    content_removed: int = 0
    media_removed: int = 0

    @property
    def affected(self) -> int:
        return self.content_removed + self.media_removed


def _group_duplicates(rows: List[Tuple[str, tuple]]) -> Dict[tuple, List[str]]:
    """Rows arrive sorted earliest-first; the first id per key survives."""
    groups: Dict[tuple, List[str]] = {}
    for row_id, key in rows:
        groups.setdefault(key, []).append(row_id)
    return {key: ids for key, ids in groups.items() if len(ids) > 1}


async def deduplicate_content(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(ContentItem.id, ContentItem.provider, ContentItem.provider_item_id)
        .where(ContentItem.user_id == user_id)
        .order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
    )
    groups = _group_duplicates([(row.id, (row.provider, row.provider_item_id)) for row in result.all()])

    removed = 0
    for ids in groups.values():
        survivor, duplicates = ids[0], ids[1:]
        await db.execute(
            update(ContentMedia)
            .where(ContentMedia.content_item_id.in_(duplicates))
            .values(content_item_id=survivor)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(IngestionJob)
            .where(IngestionJob.content_item_id.in_(duplicates))
            .values(content_item_id=survivor)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(ContentItem)
            .where(ContentItem.id.in_(duplicates))
            .execution_options(synchronize_session=False)
        )
        removed += len(duplicates)

    if removed:
        await db.commit()
    return removed


async def deduplicate_media_links(db: AsyncSession, user_id: str) -> int:
    """
    Drop repeated links of one asset to the same content item.

    Grouped by (content_item_id, content_hash) rather than hash alone: two
    items whose URLs resolved to identical bytes each keep their own link
    to the shared MediaAsset.
    """
    result = await db.execute(
        select(ContentMedia.id, ContentMedia.content_item_id, ContentMedia.content_hash)
        .where(ContentMedia.user_id == user_id)
        .order_by(ContentMedia.created_at.asc(), ContentMedia.id.asc())
    )
    groups = _group_duplicates([(row.id, (row.content_item_id, row.content_hash)) for row in result.all()])
    duplicates = [row_id for ids in groups.values() for row_id in ids[1:]]
    if not duplicates:
        return 0
    await db.execute(
        delete(ContentMedia)
        .where(ContentMedia.id.in_(duplicates))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return len(duplicates)


async def deduplicate_user(db: AsyncSession, user_id: str) -> DedupReport:
    """Content first, so links re-pointed onto a survivor are reconciled in the same pass."""
    report = DedupReport()
    report.content_removed = await deduplicate_content(db, user_id)
    report.media_removed = await deduplicate_media_links(db, user_id)
    logger.info(
        "Deduplication for user %s removed %s content item(s) and %s media record(s)",
        user_id,
        report.content_removed,
        report.media_removed,
    )
    return report
