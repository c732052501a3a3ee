"""Chunked upload API router."""

from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from vodstream.core.config import settings
from vodstream.core.errors import ServiceError
from vodstream.modules.upload.assembler import ChunkedUploadAssembler, UploadComplete
from vodstream.modules.upload.schemas import ChunkProgressResponse, UploadCompleteResponse
from vodstream.modules.video.service import VideoProcessingService

router = APIRouter(prefix="/upload", tags=["upload"])


def get_assembler() -> ChunkedUploadAssembler:
    return ChunkedUploadAssembler()


def get_video_service() -> VideoProcessingService:
    return VideoProcessingService()


@router.post(
    "/chunk",
    response_model=Union[UploadCompleteResponse, ChunkProgressResponse],
)
async def upload_chunk(
    chunk: UploadFile = File(...),
    chunk_number: int = Form(..., alias="chunkNumber"),
    total_chunks: int = Form(..., alias="totalChunks"),
    filename: str = Form(...),
    session_id: Optional[str] = Form(None, alias="sessionId"),
    assembler: ChunkedUploadAssembler = Depends(get_assembler),
    video_service: VideoProcessingService = Depends(get_video_service),
):
    """Accept one chunk of a file upload.

    Chunks may arrive in any order. The response for the last outstanding
    chunk carries the new video id.
    """
    data = await chunk.read(settings.MAX_CHUNK_SIZE + 1)
    if len(data) > settings.MAX_CHUNK_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Chunk exceeds {settings.MAX_CHUNK_SIZE} bytes",
        )

    try:
        result = await assembler.accept_chunk(
            session_id=session_id,
            chunk_index=chunk_number,
            total_chunks=total_chunks,
            data=data,
            filename=filename,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if isinstance(result, UploadComplete):
        await video_service.register_upload(result)
        return UploadCompleteResponse(video_id=result.video_id, filename=result.filename)

    return ChunkProgressResponse(
        session_id=result.session_id,
        uploaded_chunks=result.uploaded_chunks,
        total_chunks=result.total_chunks,
    )
