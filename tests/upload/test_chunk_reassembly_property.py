"""Property-based tests for chunked upload reassembly.

**Feature: vodstream, Property 7: Round-Trip Reassembly**
**Feature: vodstream, Property 8: Session Isolation**
"""

import asyncio
import os
import time

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from vodstream.core.errors import InputError, NotFoundError, SessionStateError
from vodstream.modules.upload.assembler import (
    ChunkedUploadAssembler,
    ChunkProgress,
    UploadComplete,
    sanitize_filename,
)
from vodstream.modules.upload.sessions import InMemoryUploadSessionStore


def split(data: bytes, chunk_size: int) -> list[bytes]:
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)] or [b""]


def make_assembler(root, ttl_seconds=3600) -> ChunkedUploadAssembler:
    store = InMemoryUploadSessionStore(ttl_seconds=ttl_seconds)
    return ChunkedUploadAssembler(store=store, upload_dir=str(root))


async def upload(assembler, chunks, order, filename="movie.mp4", session_id=None):
    result = None
    for index in order:
        result = await assembler.accept_chunk(
            session_id=session_id,
            chunk_index=index,
            total_chunks=len(chunks),
            data=chunks[index],
            filename=filename,
        )
        if isinstance(result, ChunkProgress):
            session_id = result.session_id
    return result


@pytest.fixture
def upload_root(tmp_path, monkeypatch):
    # New sessions put part files under UPLOAD_DIR/temp.
    from vodstream.core.config import settings as app_settings

    monkeypatch.setattr(app_settings, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


class TestRoundTripReassembly:
    """Property tests for reassembly order."""

    @given(
        data=st.binary(min_size=1, max_size=4096),
        chunk_size=st.integers(min_value=64, max_value=512),
        seed=st.randoms(use_true_random=False),
    )
    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture], deadline=None)
    def test_any_arrival_order_reproduces_file(self, upload_root, data, chunk_size, seed) -> None:
        """**Feature: vodstream, Property 7: Round-Trip Reassembly**

        For any file split into N chunks submitted in any permuted order, the
        reassembled bytes SHALL equal the original.
        """
        chunks = split(data, chunk_size)
        order = list(range(len(chunks)))
        seed.shuffle(order)
        assembler = make_assembler(upload_root)

        result = asyncio.run(upload(assembler, chunks, order))

        assert isinstance(result, UploadComplete)
        with open(result.path, "rb") as f:
            assert f.read() == data
        assert result.size == len(data)
        assert not [n for n in os.listdir(upload_root / "temp") if result.video_id in n]

    @pytest.mark.asyncio
    async def test_order_2_0_1(self, upload_root) -> None:
        chunks = [b"aaa", b"bbb", b"c"]
        assembler = make_assembler(upload_root)

        first = await assembler.accept_chunk(None, 2, 3, chunks[2], "clip.mov")
        assert isinstance(first, ChunkProgress)
        assert (first.uploaded_chunks, first.total_chunks) == (1, 3)

        second = await assembler.accept_chunk(first.session_id, 0, 3, chunks[0], "clip.mov")
        assert second.uploaded_chunks == 2

        done = await assembler.accept_chunk(first.session_id, 1, 3, chunks[1], "clip.mov")
        assert isinstance(done, UploadComplete)
        assert done.filename == "clip.mov"
        assert os.path.basename(done.path) == f"{done.video_id}_clip.mov"
        with open(done.path, "rb") as f:
            assert f.read() == b"aaabbbc"

    @pytest.mark.asyncio
    async def test_resubmitted_chunk_overwrites(self, upload_root) -> None:
        assembler = make_assembler(upload_root)

        first = await assembler.accept_chunk(None, 0, 2, b"stale", "a.mp4")
        again = await assembler.accept_chunk(first.session_id, 0, 2, b"fresh", "a.mp4")
        assert again.uploaded_chunks == 1

        done = await assembler.accept_chunk(first.session_id, 1, 2, b"!", "a.mp4")
        with open(done.path, "rb") as f:
            assert f.read() == b"fresh!"

    @pytest.mark.asyncio
    async def test_single_chunk_upload_completes_immediately(self, upload_root) -> None:
        assembler = make_assembler(upload_root)

        result = await assembler.accept_chunk(None, 0, 1, b"whole file", "one.mp4")

        assert isinstance(result, UploadComplete)


class TestSessionIsolation:
    """Tests for concurrent sessions."""

    @pytest.mark.asyncio
    async def test_concurrent_sessions_do_not_interfere(self, upload_root) -> None:
        """**Feature: vodstream, Property 8: Session Isolation**

        Chunks for two sessions submitted concurrently SHALL never mix.
        """
        assembler = make_assembler(upload_root)
        data_a = bytes(range(256)) * 4
        data_b = b"B" * 700
        chunks_a = split(data_a, 100)
        chunks_b = split(data_b, 100)

        first_a = await assembler.accept_chunk(None, 0, len(chunks_a), chunks_a[0], "same.mp4")
        first_b = await assembler.accept_chunk(None, 0, len(chunks_b), chunks_b[0], "same.mp4")

        tasks = [
            assembler.accept_chunk(first_a.session_id, i, len(chunks_a), chunks_a[i], "same.mp4")
            for i in reversed(range(1, len(chunks_a)))
        ] + [
            assembler.accept_chunk(first_b.session_id, i, len(chunks_b), chunks_b[i], "same.mp4")
            for i in range(1, len(chunks_b))
        ]
        results = await asyncio.gather(*tasks)

        completed = [r for r in results if isinstance(r, UploadComplete)]
        assert len(completed) == 2
        assert len({r.video_id for r in completed}) == 2
        contents = set()
        for result in completed:
            with open(result.path, "rb") as f:
                contents.add(f.read())
        assert contents == {data_a, data_b}

    @pytest.mark.asyncio
    async def test_concurrent_chunks_finalize_once(self, upload_root) -> None:
        assembler = make_assembler(upload_root)
        chunks = split(b"x" * 1000, 50)
        first = await assembler.accept_chunk(None, 0, len(chunks), chunks[0], "f.mp4")

        results = await asyncio.gather(*[
            assembler.accept_chunk(first.session_id, i, len(chunks), chunks[i], "f.mp4")
            for i in range(1, len(chunks))
        ])

        assert sum(isinstance(r, UploadComplete) for r in results) == 1


class TestChunkValidation:
    """Tests for rejected chunks."""

    @pytest.mark.asyncio
    async def test_mismatched_total_rejected_and_session_untouched(self, upload_root) -> None:
        assembler = make_assembler(upload_root)
        first = await assembler.accept_chunk(None, 0, 3, b"a", "m.mp4")

        with pytest.raises(SessionStateError) as exc_info:
            await assembler.accept_chunk(first.session_id, 1, 2, b"b", "m.mp4")

        assert exc_info.value.status_code == 409
        session = await assembler.store.get(first.session_id)
        assert session.total_chunks == 3
        assert session.received == {0}

    @pytest.mark.asyncio
    async def test_unknown_session_is_not_found(self, upload_root) -> None:
        assembler = make_assembler(upload_root)

        with pytest.raises(NotFoundError):
            await assembler.accept_chunk("no-such-session", 0, 2, b"a", "m.mp4")

    @pytest.mark.parametrize(
        "index,total",
        [(-1, 3), (3, 3), (0, 0)],
    )
    @pytest.mark.asyncio
    async def test_out_of_range_rejected(self, upload_root, index, total) -> None:
        assembler = make_assembler(upload_root)

        with pytest.raises(InputError):
            await assembler.accept_chunk(None, index, total, b"a", "m.mp4")

    @pytest.mark.parametrize("filename", ["", None, "..", "   "])
    def test_empty_filename_rejected(self, filename) -> None:
        with pytest.raises(InputError):
            sanitize_filename(filename)

    def test_filename_directories_stripped(self) -> None:
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("C:\\videos\\clip.mp4") == "clip.mp4"

    @pytest.mark.asyncio
    async def test_missing_part_at_finalize(self, upload_root) -> None:
        assembler = make_assembler(upload_root)
        first = await assembler.accept_chunk(None, 0, 2, b"a", "m.mp4")
        session = await assembler.store.get(first.session_id)
        os.remove(session.part_path(0))

        with pytest.raises(SessionStateError) as exc_info:
            await assembler.accept_chunk(first.session_id, 1, 2, b"b", "m.mp4")

        assert exc_info.value.chunk_index == 0


class TestSessionExpiry:
    """Tests for abandoned session cleanup."""

    @pytest.mark.asyncio
    async def test_purge_expired_removes_parts(self, upload_root) -> None:
        store = InMemoryUploadSessionStore(ttl_seconds=3600)
        assembler = ChunkedUploadAssembler(store=store, upload_dir=str(upload_root))
        first = await assembler.accept_chunk(None, 0, 2, b"a", "m.mp4")
        session = await store.get(first.session_id)
        part = session.part_path(0)
        assert os.path.exists(part)

        session.expires_at = time.time() - 1
        purged = await store.purge_expired()

        assert purged == 1
        assert not os.path.exists(part)
        assert await store.get(first.session_id) is None

    @pytest.mark.asyncio
    async def test_expired_session_is_not_found(self, upload_root) -> None:
        store = InMemoryUploadSessionStore(ttl_seconds=3600)
        assembler = ChunkedUploadAssembler(store=store, upload_dir=str(upload_root))
        first = await assembler.accept_chunk(None, 0, 2, b"a", "m.mp4")
        (await store.get(first.session_id)).expires_at = time.time() - 1

        with pytest.raises(NotFoundError):
            await assembler.accept_chunk(first.session_id, 1, 2, b"b", "m.mp4")
