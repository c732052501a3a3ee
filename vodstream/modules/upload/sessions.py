"""Upload session registry.

Sessions track which chunk indices have arrived for a file. Two stores are
provided: Redis, which survives restarts and is shared by every worker
process, and an in-process store used when Redis is not configured.
"""

import asyncio
import glob
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import LockError, LockNotOwnedError, RedisError
from starlette.concurrency import run_in_threadpool

from vodstream.core.config import settings
from vodstream.core.errors import SessionStateError
from vodstream.core.metrics import UPLOAD_SESSIONS_ACTIVE
from vodstream.core.redis import get_redis

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "upload:session:"


@dataclass
class UploadSession:
    """State of one chunked upload."""
    session_id: str
    video_id: str
    filename: str
    total_chunks: int
    scratch_path: str
    received: set[int] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None

    @property
    def uploaded_chunks(self) -> int:
        return len(self.received)

    def part_path(self, index: int) -> str:
        return f"{self.scratch_path}.part{index}"


def new_session(filename: str, total_chunks: int, ttl_seconds: int) -> UploadSession:
    """Mint a session with fresh session and video ids."""
    video_id = str(uuid.uuid4())
    now = time.time()
    return UploadSession(
        session_id=str(uuid.uuid4()),
        video_id=video_id,
        filename=filename,
        total_chunks=total_chunks,
        scratch_path=os.path.join(settings.UPLOAD_DIR, "temp", f"{video_id}_{filename}"),
        created_at=now,
        expires_at=now + ttl_seconds if ttl_seconds else None,
    )


def sweep_stale_parts(temp_dir: str, max_age_seconds: float) -> int:
    """Delete part files in temp_dir not modified within max_age_seconds."""
    cutoff = time.time() - max_age_seconds
    removed = 0
    for part in glob.glob(os.path.join(glob.escape(temp_dir), "*.part*")):
        try:
            if os.path.getmtime(part) < cutoff:
                os.remove(part)
                removed += 1
        except FileNotFoundError:
            continue
    return removed


class UploadSessionStore(ABC):
    """Storage for upload sessions."""

    @abstractmethod
    async def create(self, filename: str, total_chunks: int) -> UploadSession:
        """Create and persist a new session."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[UploadSession]:
        """Get a live session, or None if unknown or expired."""

    @abstractmethod
    async def add_chunk(self, session_id: str, index: int) -> int:
        """Record a received chunk index. Returns the distinct received count."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session."""

    @abstractmethod
    def lock(self, session_id: str):
        """Async context manager serializing work on one session."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete part files left behind by expired sessions. Returns how many were purged."""


class InMemoryUploadSessionStore(UploadSessionStore):
    """Process-local session store.

    Each session has its own asyncio.Lock, so chunks for different sessions
    never wait on each other.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.UPLOAD_SESSION_TTL_SECONDS
        self._sessions: dict[str, UploadSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _expired(self, session: UploadSession) -> bool:
        return session.expires_at is not None and session.expires_at <= time.time()

    async def create(self, filename: str, total_chunks: int) -> UploadSession:
        session = new_session(filename, total_chunks, self.ttl_seconds)
        self._sessions[session.session_id] = session
        UPLOAD_SESSIONS_ACTIVE.set(len(self._sessions))
        return session

    async def get(self, session_id: str) -> Optional[UploadSession]:
        session = self._sessions.get(session_id)
        if session is None or self._expired(session):
            return None
        return session

    async def add_chunk(self, session_id: str, index: int) -> int:
        session = self._sessions[session_id]
        session.received.add(index)
        return len(session.received)

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        UPLOAD_SESSIONS_ACTIVE.set(len(self._sessions))

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            yield

    async def purge_expired(self) -> int:
        """Drop expired sessions and delete their part files.

        Returns:
            Number of sessions purged
        """
        expired = [s for s in self._sessions.values() if self._expired(s)]
        for session in expired:
            for part in glob.glob(glob.escape(session.scratch_path) + ".part*"):
                try:
                    os.remove(part)
                except FileNotFoundError:
                    pass
            await self.delete(session.session_id)
        if expired:
            logger.info("Purged expired upload sessions", extra={"count": len(expired)})
        return len(expired)


class RedisUploadSessionStore(UploadSessionStore):
    """Redis-backed session store.

    Session fields live in a hash and received indices in a set, both with
    a TTL. Work on one session is serialized with a Redis lock, which is
    held across processes and renewed while its holder is still working.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: Optional[int] = None,
        lock_timeout: Optional[float] = None,
        lock_wait: Optional[float] = None,
        temp_dir: Optional[str] = None,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.UPLOAD_SESSION_TTL_SECONDS
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.UPLOAD_LOCK_TIMEOUT_SECONDS
        self.lock_wait = lock_wait if lock_wait is not None else settings.UPLOAD_LOCK_WAIT_SECONDS
        self.temp_dir = temp_dir or os.path.join(settings.UPLOAD_DIR, "temp")

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    @staticmethod
    def _chunks_key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}:chunks"

    async def create(self, filename: str, total_chunks: int) -> UploadSession:
        session = new_session(filename, total_chunks, self.ttl_seconds)
        key = self._key(session.session_id)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(
                key,
                mapping={
                    "video_id": session.video_id,
                    "filename": session.filename,
                    "total_chunks": session.total_chunks,
                    "scratch_path": session.scratch_path,
                    "created_at": session.created_at,
                },
            )
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()
        return session

    async def get(self, session_id: str) -> Optional[UploadSession]:
        data = await self.client.hgetall(self._key(session_id))
        if not data:
            return None
        received = await self.client.smembers(self._chunks_key(session_id))
        created_at = float(data["created_at"])
        return UploadSession(
            session_id=session_id,
            video_id=data["video_id"],
            filename=data["filename"],
            total_chunks=int(data["total_chunks"]),
            scratch_path=data["scratch_path"],
            received={int(i) for i in received},
            created_at=created_at,
            expires_at=created_at + self.ttl_seconds,
        )

    async def add_chunk(self, session_id: str, index: int) -> int:
        chunks_key = self._chunks_key(session_id)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.sadd(chunks_key, index)
            pipe.expire(chunks_key, self.ttl_seconds)
            pipe.scard(chunks_key)
            _, _, count = await pipe.execute()
        return int(count)

    async def delete(self, session_id: str) -> None:
        await self.client.delete(self._key(session_id), self._chunks_key(session_id))

    async def _keep_alive(self, lock) -> None:
        while True:
            await asyncio.sleep(self.lock_timeout / 3)
            await lock.reacquire()

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"{self._key(session_id)}:lock",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait,
        )
        try:
            acquired = await lock.acquire()
        except LockError:
            acquired = False
        if not acquired:
            raise SessionStateError(
                f"Upload session {session_id} is busy; retry the chunk",
                session_id=session_id,
            )

        renewer = asyncio.create_task(self._keep_alive(lock))
        try:
            yield
        finally:
            renewer.cancel()
            try:
                await renewer
            except asyncio.CancelledError:
                pass
            except LockError:
                logger.warning("Lost upload session lock while holding it", extra={"session_id": session_id})
            try:
                await lock.release()
            except LockNotOwnedError:
                logger.warning("Upload session lock expired before release", extra={"session_id": session_id})

    async def purge_expired(self) -> int:
        """Delete part files older than the session TTL.

        Session keys expire on their own. A part file is always written after
        its session was created, so one older than the TTL belongs to an
        expired session.
        """
        removed = await run_in_threadpool(sweep_stale_parts, self.temp_dir, self.ttl_seconds)
        if removed:
            logger.info("Purged stale upload parts", extra={"count": removed})
        return removed


_store: Optional[UploadSessionStore] = None


def get_session_store() -> UploadSessionStore:
    """Get the process-wide upload session store."""
    global _store
    if _store is None:
        client = get_redis()
        if client is not None:
            _store = RedisUploadSessionStore(client)
        else:
            logger.warning(
                "REDIS_URL not set; upload sessions are held in memory and lost on restart"
            )
            _store = InMemoryUploadSessionStore()
    return _store


async def sweep_sessions_forever(interval_seconds: float) -> None:
    """Purge expired upload sessions every interval until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await get_session_store().purge_expired()
        except (OSError, RedisError):
            logger.exception("Upload session sweep failed")
