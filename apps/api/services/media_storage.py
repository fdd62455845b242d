"""Content-addressed local media storage."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from config import settings
from services.errors import StorageError

logger = logging.getLogger(__name__)


class LocalMediaStorage:
    """Writes payloads under a root directory; writes land atomically via temp file and rename."""

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.MEDIA_STORAGE_DIR)

    def path_for(self, name: str) -> Path:
        safe_name = os.path.basename(name)
        if not safe_name or safe_name in {".", ".."}:
            raise StorageError(f"Invalid storage name: {name!r}")
        return self.root / safe_name

    def _write_sync(self, name: str, data: bytes) -> str:
        target = self.path_for(name)
        temp_path: Optional[str] = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".tmp-", dir=str(target.parent))
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(temp_path, target)
            temp_path = None
        except OSError as exc:
            raise StorageError(f"Failed to write media {target}: {exc}") from exc
        finally:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.unlink(temp_path)
                except OSError:
                    logger.warning("Could not cleanup temporary media file %s", temp_path)
        return str(target)

    async def write(self, name: str, data: bytes) -> str:
        """Persist bytes under ``name``; returns the absolute storage path."""
        return await asyncio.to_thread(self._write_sync, name, data)

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()
