"""Chunked upload reassembly.

Chunks may arrive in any order and may be resent. Each chunk is written to
its own part file, so resending a chunk simply overwrites it. Once every
index has arrived the parts are concatenated in ascending index order.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from starlette.concurrency import run_in_threadpool

from vodstream.core.config import settings
from vodstream.core.errors import InputError, NotFoundError, SessionStateError
from vodstream.core.logging import log_info
from vodstream.core.metrics import UPLOAD_BYTES_TOTAL, UPLOAD_CHUNKS_TOTAL
from vodstream.modules.upload.sessions import (
    UploadSession,
    UploadSessionStore,
    get_session_store,
)

logger = logging.getLogger(__name__)


@dataclass
class ChunkProgress:
    """Returned while chunks are still outstanding."""
    session_id: str
    uploaded_chunks: int
    total_chunks: int


@dataclass
class UploadComplete:
    """Returned once the file has been reassembled."""
    video_id: str
    filename: str
    path: str
    size: int


def sanitize_filename(filename: Optional[str]) -> str:
    """Strip directory components from a client-supplied filename."""
    name = Path((filename or "").replace("\\", "/")).name.strip()
    if not name or name in (".", ".."):
        raise InputError("filename is required")
    return name


def _write_part(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def _concatenate(session: UploadSession, final_path: str) -> int:
    """Join part files in index order into final_path. Returns the byte size."""
    missing = [i for i in range(session.total_chunks) if not os.path.exists(session.part_path(i))]
    if missing:
        raise SessionStateError(
            f"Missing chunk {missing[0]} for upload session {session.session_id}",
            session_id=session.session_id,
            chunk_index=missing[0],
        )

    os.makedirs(os.path.dirname(final_path), exist_ok=True)
    tmp_path = f"{final_path}.assembling"
    try:
        with open(tmp_path, "wb") as out:
            for index in range(session.total_chunks):
                with open(session.part_path(index), "rb") as part:
                    shutil.copyfileobj(part, out)
        os.replace(tmp_path, final_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise

    for index in range(session.total_chunks):
        os.remove(session.part_path(index))
    return os.path.getsize(final_path)


class ChunkedUploadAssembler:
    """Accepts chunks and rebuilds the uploaded file."""

    def __init__(
        self,
        store: Optional[UploadSessionStore] = None,
        upload_dir: Optional[str] = None,
    ):
        self.store = store or get_session_store()
        self.upload_dir = upload_dir or settings.UPLOAD_DIR

    def final_path(self, session: UploadSession) -> str:
        return os.path.join(self.upload_dir, f"{session.video_id}_{session.filename}")

    async def accept_chunk(
        self,
        session_id: Optional[str],
        chunk_index: int,
        total_chunks: int,
        data: bytes,
        filename: Optional[str],
    ) -> Union[ChunkProgress, UploadComplete]:
        """Store one chunk and reassemble the file when it is the last one.

        Args:
            session_id: Existing session id, or None to start a new session
            chunk_index: Zero-based chunk index
            total_chunks: Number of chunks the client will send
            data: Chunk bytes
            filename: Original filename

        Returns:
            ChunkProgress while chunks are outstanding, UploadComplete once
            the file has been reassembled

        Raises:
            InputError: If a field is missing or out of range
            NotFoundError: If session_id is unknown or expired
            SessionStateError: If total_chunks disagrees with the session,
                or a part is missing at reassembly
        """
        filename = sanitize_filename(filename)
        if total_chunks < 1:
            raise InputError("totalChunks must be at least 1")
        if not 0 <= chunk_index < total_chunks:
            raise InputError(f"chunkNumber {chunk_index} is outside [0, {total_chunks})")

        if session_id:
            session = await self.store.get(session_id)
            if session is None:
                UPLOAD_CHUNKS_TOTAL.labels(outcome="unknown_session").inc()
                raise NotFoundError(f"Upload session {session_id} not found or expired")
        else:
            session = await self.store.create(filename, total_chunks)
            log_info(
                logger,
                "Upload session started",
                session_id=session.session_id,
                video_id=session.video_id,
                upload_filename=filename,
                total_chunks=total_chunks,
            )

        async with self.store.lock(session.session_id):
            # Re-read under the lock: a concurrent chunk may have finalized it.
            current = await self.store.get(session.session_id)
            if current is None:
                raise NotFoundError(f"Upload session {session.session_id} not found or expired")
            session = current

            if total_chunks != session.total_chunks:
                UPLOAD_CHUNKS_TOTAL.labels(outcome="rejected").inc()
                raise SessionStateError(
                    f"Chunk declares {total_chunks} chunks but session expects {session.total_chunks}",
                    session_id=session.session_id,
                    chunk_index=chunk_index,
                )

            await run_in_threadpool(_write_part, session.part_path(chunk_index), data)
            received = await self.store.add_chunk(session.session_id, chunk_index)
            UPLOAD_CHUNKS_TOTAL.labels(outcome="accepted").inc()
            UPLOAD_BYTES_TOTAL.inc(len(data))

            if received < session.total_chunks:
                return ChunkProgress(
                    session_id=session.session_id,
                    uploaded_chunks=received,
                    total_chunks=session.total_chunks,
                )

            final_path = self.final_path(session)
            size = await run_in_threadpool(_concatenate, session, final_path)
            await self.store.delete(session.session_id)
            UPLOAD_CHUNKS_TOTAL.labels(outcome="completed").inc()

        log_info(
            logger,
            "Upload reassembled",
            session_id=session.session_id,
            video_id=session.video_id,
            size=size,
        )
        return UploadComplete(
            video_id=session.video_id,
            filename=session.filename,
            path=final_path,
            size=size,
        )
