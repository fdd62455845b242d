"""Media materialization: download, content-hash, dedupe against stored assets, link to content."""

from __future__ import annotations

import hashlib
import io
import ipaddress
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.content_media import ContentMedia
from models.media_asset import MediaAsset
from services.errors import BlockedMediaUrlError, MediaDownloadError
from services.media_storage import LocalMediaStorage

logger = logging.getLogger(__name__)

EXTENSION_BY_MIME = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
}
DEFAULT_EXTENSION = ".bin"
MAX_REDIRECTS = 5
BLOCKED_HOSTNAMES = {"localhost", "metadata.google.internal"}


@dataclass(frozen=True)
class DownloadedMedia:
    content: bytes
    mime_type: Optional[str]
    final_url: str


@dataclass(frozen=True)
class MaterializeResult:
    asset: MediaAsset
    asset_created: bool
    link_created: bool


def extension_for_mime(mime_type: Optional[str]) -> str:
    return EXTENSION_BY_MIME.get(str(mime_type or "").split(";", 1)[0].strip().lower(), DEFAULT_EXTENSION)


def content_hash_of(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def validate_media_url(url: str) -> None:
    """Reject non-http(s) schemes and private, loopback, link-local or metadata hosts."""
    parsed = urlparse(str(url or "").strip())
    if parsed.scheme not in {"http", "https"}:
        raise BlockedMediaUrlError(f"Unsupported media URL scheme: {parsed.scheme or 'none'}")
    host = (parsed.hostname or "").strip().lower()
    if not host:
        raise BlockedMediaUrlError("Media URL has no host")
    if settings.ALLOW_PRIVATE_MEDIA_HOSTS:
        return
    if host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        raise BlockedMediaUrlError(f"Media host {host} is not allowed")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return
    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
        or address.is_multicast
    ):
        raise BlockedMediaUrlError(f"Media host {host} is not allowed")


async def _read_capped(response: httpx.Response, max_bytes: int) -> bytes:
    declared = response.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise MediaDownloadError(f"Media exceeds {max_bytes} bytes", retryable=False)
    chunks = []
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > max_bytes:
            raise MediaDownloadError(f"Media exceeds {max_bytes} bytes", retryable=False)
        chunks.append(chunk)
    return b"".join(chunks)


async def download_media(
    url: str,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    max_bytes: Optional[int] = None,
) -> DownloadedMedia:
    validate_media_url(url)
    max_bytes = int(max_bytes or settings.MEDIA_MAX_BYTES)
    timeout = float(settings.MEDIA_DOWNLOAD_TIMEOUT_SECONDS)

    async def _fetch(client: httpx.AsyncClient) -> DownloadedMedia:
        current = url
        for _hop in range(MAX_REDIRECTS + 1):
            async with client.stream("GET", current, timeout=timeout, follow_redirects=False) as response:
                if response.is_redirect:
                    location = response.headers.get("location")
                    if not location:
                        raise MediaDownloadError(f"GET {current} redirected without a Location", retryable=False)
                    # Each hop is checked before it is requested.
                    current = str(response.url.join(location))
                    validate_media_url(current)
                    continue
                if response.status_code < 200 or response.status_code >= 300:
                    retryable = response.status_code in (408, 429) or response.status_code >= 500
                    raise MediaDownloadError(
                        f"GET {current} returned HTTP {response.status_code}",
                        retryable=retryable,
                        status_code=response.status_code,
                    )
                content = await _read_capped(response, max_bytes)
                mime_type = (response.headers.get("content-type") or "").split(";", 1)[0].strip().lower() or None
                return DownloadedMedia(content=content, mime_type=mime_type, final_url=current)
        raise MediaDownloadError(f"GET {url} exceeded {MAX_REDIRECTS} redirects", retryable=False)

    try:
        if http_client is not None:
            return await _fetch(http_client)
        async with httpx.AsyncClient() as client:
            return await _fetch(client)
    except httpx.HTTPError as exc:
        raise MediaDownloadError(f"Download of {url} failed: {exc!r}") from exc


def extract_dimensions(content: bytes, mime_type: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """Best-effort image dimensions; a corrupt payload yields (None, None)."""
    if not str(mime_type or "").startswith("image/"):
        return None, None
    try:
        with Image.open(io.BytesIO(content)) as image:
            image.verify()
        with Image.open(io.BytesIO(content)) as image:
            width, height = image.size
        return int(width), int(height)
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        logger.warning("Metadata extraction failed for %s payload: %s", mime_type, exc)
        return None, None


async def _find_asset(db: AsyncSession, content_hash: str) -> Optional[MediaAsset]:
    result = await db.execute(select(MediaAsset).where(MediaAsset.content_hash == content_hash))
    return result.scalar_one_or_none()


async def _store_asset(
    db: AsyncSession,
    *,
    downloaded: DownloadedMedia,
    content_hash: str,
    source_url: str,
    storage: LocalMediaStorage,
) -> Tuple[MediaAsset, bool]:
    existing = await _find_asset(db, content_hash)
    if existing:
        return existing, False

    extension = extension_for_mime(downloaded.mime_type)
    storage_path = await storage.write(f"{content_hash}{extension}", downloaded.content)
    width, height = extract_dimensions(downloaded.content, downloaded.mime_type)

    asset = MediaAsset(
        id=str(uuid.uuid4()),
        content_hash=content_hash,
        storage_path=storage_path,
        size_bytes=len(downloaded.content),
        mime_type=downloaded.mime_type,
        width=width,
        height=height,
        first_source_url=source_url,
        is_optimized=False,
    )
    db.add(asset)
    try:
        await db.commit()
        return asset, True
    except IntegrityError:
        # Another worker inserted the same hash first.
        await db.rollback()
        logger.info("MediaAsset %s inserted concurrently; reusing existing row", content_hash)
    winner = await _find_asset(db, content_hash)
    if winner is None:
        raise MediaDownloadError(f"MediaAsset {content_hash} vanished after uniqueness conflict")
    return winner, False


async def link_asset_to_content(
    db: AsyncSession,
    *,
    user_id: str,
    content_item_id: str,
    asset: MediaAsset,
    source_url: Optional[str],
) -> bool:
    result = await db.execute(
        select(ContentMedia).where(
            ContentMedia.content_item_id == content_item_id,
            ContentMedia.media_asset_id == asset.id,
        )
    )
    if result.scalars().first():
        return False
    db.add(
        ContentMedia(
            id=str(uuid.uuid4()),
            user_id=user_id,
            content_item_id=content_item_id,
            media_asset_id=asset.id,
            content_hash=asset.content_hash,
            source_url=source_url,
        )
    )
    await db.commit()
    return True


async def materialize_media(
    db: AsyncSession,
    *,
    user_id: str,
    source_url: str,
    content_item_id: Optional[str] = None,
    storage: Optional[LocalMediaStorage] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> MaterializeResult:
    """Download ``source_url`` and resolve it to exactly one MediaAsset per distinct payload."""
    storage = storage or LocalMediaStorage()
    downloaded = await download_media(source_url, http_client=http_client)
    content_hash = content_hash_of(downloaded.content)

    asset, created = await _store_asset(
        db,
        downloaded=downloaded,
        content_hash=content_hash,
        source_url=source_url,
        storage=storage,
    )
    link_created = False
    if content_item_id:
        link_created = await link_asset_to_content(
            db,
            user_id=user_id,
            content_item_id=content_item_id,
            asset=asset,
            source_url=source_url,
        )
    logger.info(
        "Materialized %s as %s (%s)",
        source_url,
        content_hash[:12],
        "stored" if created else "deduplicated",
    )
    return MaterializeResult(asset=asset, asset_created=created, link_created=link_created)
