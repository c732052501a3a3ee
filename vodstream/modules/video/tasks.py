"""Celery tasks for video processing.

Processing is not idempotent (it replaces published output), so tasks are
never retried automatically; a failed run leaves the record ``failed``.
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from celery import Task

from vodstream.core.celery_app import celery_app
from vodstream.core.config import settings
from vodstream.core.logging import bind_context, log_error
from vodstream.core.metadata import RedisMetadataStore, get_metadata_store
from vodstream.modules.video.service import VideoProcessingService

logger = logging.getLogger(__name__)


class ProcessVideoTask(Task):
    """Base task for video processing."""
    abstract = True
    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        video_id = args[0] if args else kwargs.get("video_id")
        log_error(logger, "Video processing task failed", exc, video_id=video_id, task_id=task_id)


@celery_app.task(bind=True, base=ProcessVideoTask, name="vodstream.process_video")
def process_video_task(
    self: ProcessVideoTask,
    video_id: str,
    source_path: Optional[str] = None,
) -> dict:
    """Transcode a video and publish its HLS ladder.

    Args:
        video_id: Asset id
        source_path: Optional Blob Store key of the source

    Returns:
        dict: Processing result
    """
    with bind_context(correlation_id=self.request.id, video_id=video_id):
        return asyncio.run(_process_video_async(video_id, source_path))


async def _process_video_async(video_id: str, source_path: Optional[str]) -> dict:
    """Async implementation of video processing.

    Each task runs in its own event loop, so it opens its own Redis client
    rather than reusing one bound to a previous loop.
    """
    client = redis.from_url(settings.REDIS_URL, decode_responses=True) if settings.REDIS_URL else None
    try:
        metadata = RedisMetadataStore(client) if client is not None else get_metadata_store()
        service = VideoProcessingService(metadata=metadata)
        response = await service.process(video_id, source_path)
        return response.model_dump(mode="json", by_alias=True)
    finally:
        if client is not None:
            await client.aclose()
