"""Video processing service.

Takes an uploaded source through the transcoder, publishes the HLS output to
the Blob Store and keeps the VideoRecord in the Metadata Store current.
"""

import logging
import mimetypes
import os
import threading
from datetime import datetime
from typing import Optional

from starlette.concurrency import run_in_threadpool

from vodstream.core.config import settings
from vodstream.core.errors import ConflictError, NotFoundError, ServiceError
from vodstream.core.logging import log_error, log_info
from vodstream.core.metadata import MetadataStore, get_metadata_store, video_key
from vodstream.core.storage import Storage, get_storage
from vodstream.modules.transcoding.orchestrator import (
    MASTER_PLAYLIST_NAME,
    TranscodeOrchestrator,
    TranscodeResult,
    get_orchestrator,
)
from vodstream.modules.upload.assembler import UploadComplete
from vodstream.modules.video.schemas import (
    ProcessingStatus,
    ProcessResponse,
    QualityInfo,
    SourceAsset,
    StoredFile,
    VideoRecord,
)

logger = logging.getLogger(__name__)


class StorageUploadError(ServiceError):
    """Raised when the Blob Store rejects part of the output."""

    status_code = 502


def qualities_from_result(result: TranscodeResult) -> list[QualityInfo]:
    """Describe encoded renditions for clients."""
    return [
        QualityInfo(
            name=r.rung.name,
            resolution=r.rung.resolution,
            bitrate=f"{r.rung.video_bitrate}k",
            bandwidth=r.rung.bandwidth,
            playlist_path=r.path,
        )
        for r in result.renditions
    ]


class VideoProcessingService:
    """Service for video processing operations."""

    def __init__(
        self,
        metadata: Optional[MetadataStore] = None,
        storage: Optional[Storage] = None,
        orchestrator: Optional[TranscodeOrchestrator] = None,
        upload_dir: Optional[str] = None,
        output_dir: Optional[str] = None,
    ):
        self.metadata = metadata or get_metadata_store()
        self.storage = storage or get_storage()
        self.orchestrator = orchestrator or get_orchestrator()
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.output_dir = output_dir or settings.OUTPUT_DIR

    async def _load(self, video_id: str) -> Optional[VideoRecord]:
        data = await self.metadata.get(video_key(video_id))
        return VideoRecord.model_validate(data) if data else None

    async def _save(self, record: VideoRecord) -> VideoRecord:
        record.updated_at = datetime.utcnow()
        await self.metadata.set(
            video_key(record.id), record.model_dump(mode="json", by_alias=True)
        )
        return record

    async def _set_status(
        self,
        video_id: str,
        status: ProcessingStatus,
        **fields,
    ) -> VideoRecord:
        record = await self._load(video_id) or VideoRecord(id=video_id, status=status)
        record.status = status
        for name, value in fields.items():
            setattr(record, name, value)
        return await self._save(record)

    async def register_upload(self, upload: UploadComplete) -> VideoRecord:
        """Record a reassembled upload with status ``uploaded``.

        Args:
            upload: Result of the final chunk

        Returns:
            VideoRecord: Stored record
        """
        asset = SourceAsset(
            id=upload.video_id,
            filename=upload.filename,
            path=upload.path,
            size=upload.size,
            content_type=mimetypes.guess_type(upload.filename)[0] or "application/octet-stream",
        )
        record = VideoRecord(
            id=asset.id,
            status=asset.status,
            filename=asset.filename,
            size=asset.size,
            content_type=asset.content_type,
            created_at=asset.created_at,
        )
        return await self._save(record)

    async def get_status(self, video_id: str) -> VideoRecord:
        """Get the current VideoRecord.

        Raises:
            NotFoundError: If no record exists
        """
        record = await self._load(video_id)
        if record is None:
            raise NotFoundError(f"Video {video_id} not found")
        return record

    def locate_upload(self, video_id: str) -> str:
        """Find the reassembled upload for a video in the upload directory.

        Raises:
            NotFoundError: If no file for the video exists
        """
        if os.path.isdir(self.upload_dir):
            for name in sorted(os.listdir(self.upload_dir)):
                path = os.path.join(self.upload_dir, name)
                if name.startswith(f"{video_id}_") and os.path.isfile(path) and not name.endswith(".assembling"):
                    return path
        raise NotFoundError(f"Video {video_id} not found")

    def _fetch_source(self, video_id: str, key: str) -> str:
        destination = os.path.join(
            self.upload_dir, "temp", f"{video_id}_{os.path.basename(key)}"
        )
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        if not self.storage.download(key, destination):
            raise NotFoundError(f"Source {key} not found in storage")
        return destination

    async def process(
        self,
        video_id: str,
        source_path: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProcessResponse:
        """Transcode a video and publish its HLS ladder.

        Args:
            video_id: Asset id
            source_path: Blob Store key of the source; the upload directory
                is searched when omitted
            cancel_event: Event that cancels the transcode when set

        Returns:
            ProcessResponse with the master playlist URL

        Raises:
            NotFoundError: If the source cannot be found
            ConflictError: If the video is already being processed
            ServiceError: If transcoding or publishing fails; the record is
                marked ``failed`` first
        """
        if self.orchestrator.is_running(video_id):
            raise ConflictError(f"Video {video_id} is already being processed")

        if not source_path:
            return await self._process_source(video_id, self.locate_upload(video_id), cancel_event)

        source = await run_in_threadpool(self._fetch_source, video_id, source_path)
        try:
            return await self._process_source(video_id, source, cancel_event)
        finally:
            # The downloaded copy is only needed until publishing is done.
            try:
                os.remove(source)
            except FileNotFoundError:
                pass

    async def _process_source(
        self,
        video_id: str,
        source: str,
        cancel_event: Optional[threading.Event],
    ) -> ProcessResponse:
        await self._set_status(video_id, ProcessingStatus.PROCESSING, error=None)
        log_info(logger, "Processing started", video_id=video_id, source=source)

        try:
            result = await run_in_threadpool(
                self.orchestrator.run,
                source,
                os.path.join(self.output_dir, video_id),
                asset_id=video_id,
                cancel_event=cancel_event,
            )
            files = await self._publish(result.output_dir, video_id)
        except ConflictError:
            raise
        except Exception as e:
            log_error(logger, "Processing failed", e, video_id=video_id)
            await self._set_status(video_id, ProcessingStatus.FAILED, error=str(e))
            if settings.SERVE_ORIGINAL_ON_FAILURE:
                return await self._serve_original(video_id, source)
            raise

        qualities = qualities_from_result(result)
        url = self.storage.get_url(f"{video_id}/{MASTER_PLAYLIST_NAME}")
        await self._set_status(
            video_id,
            ProcessingStatus.READY,
            url=url,
            qualities=qualities,
            files=files,
            is_original=False,
        )
        log_info(logger, "Processing completed", video_id=video_id, url=url)
        return ProcessResponse(video_id=video_id, url=url, qualities=qualities)

    async def _publish(self, local_dir: str, video_id: str) -> list[StoredFile]:
        results = await run_in_threadpool(self.storage.upload_directory, local_dir, video_id)
        failed = [r for r in results if not r.success]
        if failed:
            raise StorageUploadError(
                f"Failed to upload {failed[0].key}: {failed[0].error_message}"
            )
        if not any(r.key.endswith(f"/{MASTER_PLAYLIST_NAME}") for r in results):
            raise StorageUploadError("Master playlist not found in uploaded output")
        return [
            StoredFile(name=r.key[len(video_id) + 1:], url=r.url, size=r.file_size)
            for r in results
        ]

    async def _serve_original(self, video_id: str, source: str) -> ProcessResponse:
        """Publish the untranscoded source so the video stays playable."""
        key = f"{video_id}/original{os.path.splitext(source)[1]}"
        result = await run_in_threadpool(self.storage.upload, source, key)
        if not result.success:
            raise StorageUploadError(f"Failed to upload original: {result.error_message}")

        await self._set_status(
            video_id,
            ProcessingStatus.READY,
            url=result.url,
            qualities=[],
            files=[StoredFile(name=key[len(video_id) + 1:], url=result.url, size=result.file_size)],
            is_original=True,
        )
        log_info(logger, "Serving original after transcode failure", video_id=video_id)
        return ProcessResponse(video_id=video_id, url=result.url, is_original=True)
