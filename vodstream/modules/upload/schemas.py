"""Pydantic schemas for chunked uploads."""

from pydantic import BaseModel, Field


class ChunkProgressResponse(BaseModel):
    """Response while chunks are still outstanding."""
    complete: bool = False
    session_id: str = Field(..., alias="sessionId")
    uploaded_chunks: int = Field(..., alias="uploadedChunks")
    total_chunks: int = Field(..., alias="totalChunks")

    class Config:
        populate_by_name = True


class UploadCompleteResponse(BaseModel):
    """Response once the file has been reassembled."""
    complete: bool = True
    video_id: str = Field(..., alias="videoId")
    filename: str

    class Config:
        populate_by_name = True
