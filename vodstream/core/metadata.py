"""Metadata Store for VideoRecord snapshots.

Records are stored as JSON under ``video:<id>``. Redis is used when
``REDIS_URL`` is configured; otherwise an in-process dictionary keeps the
records for the lifetime of the process.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as redis

from vodstream.core.redis import get_redis

logger = logging.getLogger(__name__)

VIDEO_KEY_PREFIX = "video:"


def video_key(video_id: str) -> str:
    """Build the Metadata Store key for a video."""
    return f"{VIDEO_KEY_PREFIX}{video_id}"


class MetadataStore(ABC):
    """Key-value store holding JSON documents."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict[str, Any]]:
        """Get a document, or None when absent."""

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any]) -> None:
        """Store a document without expiry."""

    @abstractmethod
    async def setex(self, key: str, seconds: int, value: dict[str, Any]) -> None:
        """Store a document that expires after ``seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a document. Returns True if it existed."""


class RedisMetadataStore(MetadataStore):
    """Metadata Store backed by Redis."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        raw = await self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        await self.client.set(key, json.dumps(value, default=str))

    async def setex(self, key: str, seconds: int, value: dict[str, Any]) -> None:
        await self.client.setex(key, seconds, json.dumps(value, default=str))

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(key))


class InMemoryMetadataStore(MetadataStore):
    """Process-local Metadata Store. Data does not survive restarts."""

    def __init__(self):
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return raw

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = (json.dumps(value, default=str), None)

    async def setex(self, key: str, seconds: int, value: dict[str, Any]) -> None:
        self._data[key] = (json.dumps(value, default=str), time.monotonic() + seconds)

    async def delete(self, key: str) -> bool:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return existed


_store: Optional[MetadataStore] = None


def get_metadata_store() -> MetadataStore:
    """Get the process-wide Metadata Store."""
    global _store
    if _store is None:
        client = get_redis()
        if client is not None:
            _store = RedisMetadataStore(client)
        else:
            logger.warning(
                "REDIS_URL not set; using in-memory metadata store (data will not persist)"
            )
            _store = InMemoryMetadataStore()
    return _store
