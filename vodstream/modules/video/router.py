"""Video processing API router."""

from fastapi import APIRouter, Depends, HTTPException, Query

from vodstream.core.errors import ServiceError
from vodstream.modules.video.schemas import (
    ProcessQueuedResponse,
    ProcessRequest,
    ProcessResponse,
    ProcessingStatus,
    VideoRecord,
)
from vodstream.modules.video.service import VideoProcessingService

router = APIRouter(tags=["videos"])


def get_video_service() -> VideoProcessingService:
    return VideoProcessingService()


@router.post("/process", response_model=ProcessResponse | ProcessQueuedResponse)
async def process_video(
    request: ProcessRequest,
    background: bool = Query(False, description="Hand the job to a Celery worker"),
    service: VideoProcessingService = Depends(get_video_service),
):
    """Transcode an uploaded video into an HLS ladder."""
    if background:
        from vodstream.modules.video.tasks import process_video_task

        result = process_video_task.delay(request.video_id, request.source_path)
        return ProcessQueuedResponse(
            video_id=request.video_id,
            task_id=result.id,
            status=ProcessingStatus.PROCESSING,
        )

    try:
        return await service.process(request.video_id, request.source_path)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/video/{video_id}/status", response_model=VideoRecord)
async def get_video_status(
    video_id: str,
    service: VideoProcessingService = Depends(get_video_service),
):
    """Get the processing status of a video."""
    try:
        return await service.get_status(video_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
