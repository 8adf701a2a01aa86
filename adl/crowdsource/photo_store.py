"""
Photo storage for submission evidence.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

from adl.core.config import settings
from adl.core.exceptions import PhotoStorageError

logger = logging.getLogger(__name__)


class PhotoStore(ABC):
    """Persists uploaded photo bytes and returns a URL for them."""

    @abstractmethod
    async def save(self, event_id: str, data: bytes, mime: str, ext: str) -> str:
        """
        Store a photo.

        Raises:
            PhotoStorageError: If the photo could not be stored
        """


class LocalPhotoStore(PhotoStore):
    """Writes photos under a directory served at ``base_url``."""

    def __init__(self, directory: Optional[str] = None, base_url: Optional[str] = None):
        self.directory = Path(directory or settings.photo_storage_dir)
        self.base_url = (base_url or settings.photo_base_url).rstrip("/")

    def _write(self, filename: str, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        (self.directory / filename).write_bytes(data)

    async def save(self, event_id: str, data: bytes, mime: str, ext: str) -> str:
        filename = f"{event_id}.{ext}"
        try:
            await asyncio.to_thread(self._write, filename, data)
        except OSError as e:
            logger.error(f"Failed to store photo {filename}: {e}")
            raise PhotoStorageError("Unable to store photo") from e
        logger.debug(f"Stored photo {filename} ({len(data)} bytes, {mime})")
        return f"{self.base_url}/{filename}"


class MemoryPhotoStore(PhotoStore):
    """Keeps photos in memory; used in development and tests."""

    def __init__(self, base_url: str = "memory://photos"):
        self.base_url = base_url.rstrip("/")
        self.photos: Dict[str, Tuple[bytes, str]] = {}

    async def save(self, event_id: str, data: bytes, mime: str, ext: str) -> str:
        url = f"{self.base_url}/{event_id}.{ext}"
        self.photos[url] = (data, mime)
        return url
