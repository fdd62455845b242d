"""Image optimization batch for a user's stored media."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.content_media import ContentMedia
from models.media_asset import MediaAsset

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1920
JPEG_QUALITY = 85


def _optimize_file(source_path: str, target_path: Path) -> None:
    target_path.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(source_path) as image:
        image = ImageOps.exif_transpose(image)
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        # thumbnail() only ever shrinks, preserving aspect ratio.
        image.thumbnail((MAX_DIMENSION, MAX_DIMENSION))
        fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".jpg", dir=str(target_path.parent))
        os.close(fd)
        try:
            image.save(temp_path, "JPEG", quality=JPEG_QUALITY, optimize=True, progressive=True)
            os.replace(temp_path, target_path)
        finally:
            if os.path.exists(temp_path):
                os.unlink(temp_path)


async def optimize_user_media(
    db: AsyncSession,
    user_id: str,
    *,
    limit: Optional[int] = None,
    output_dir: Optional[str] = None,
) -> int:
    """Optimize up to ``limit`` unprocessed image assets linked to the user. Returns the count."""
    limit = max(int(limit or settings.MEDIA_OPTIMIZE_BATCH_SIZE), 1)
    target_root = Path(output_dir or settings.MEDIA_OPTIMIZED_DIR)

    linked_asset_ids = select(ContentMedia.media_asset_id).where(ContentMedia.user_id == user_id)
    result = await db.execute(
        select(MediaAsset)
        .where(
            MediaAsset.id.in_(linked_asset_ids),
            MediaAsset.is_optimized.is_(False),
            MediaAsset.mime_type.like("image/%"),
        )
        .order_by(MediaAsset.created_at.asc())
        .limit(limit)
    )
    assets = result.scalars().all()

    optimized = 0
    for asset in assets:
        target_path = target_root / f"opt_{asset.content_hash}.jpg"
        try:
            await asyncio.to_thread(_optimize_file, asset.storage_path, target_path)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning("Skipping optimization of asset %s: %s", asset.id, exc)
            continue
        asset.is_optimized = True
        asset.optimized_path = str(target_path)
        optimized += 1

    if optimized:
        await db.commit()
    logger.info("Optimized %s of %s candidate image(s) for user %s", optimized, len(assets), user_id)
    return optimized
