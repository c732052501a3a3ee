"""Pydantic schemas for video processing and status."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ProcessingStatus(str, Enum):
    """Lifecycle of an uploaded video."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class QualityInfo(BaseModel):
    """One rendition as reported to clients."""
    name: str
    resolution: str
    bitrate: str
    bandwidth: int
    playlist_path: str = Field(..., alias="playlistPath")

    class Config:
        populate_by_name = True


class StoredFile(BaseModel):
    """A file uploaded to the Blob Store."""
    name: str
    url: str
    size: int = 0


class SourceAsset(BaseModel):
    """An uploaded source file."""
    id: str
    filename: str
    path: str
    size: int
    content_type: str = "application/octet-stream"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    status: ProcessingStatus = ProcessingStatus.UPLOADED


class VideoRecord(BaseModel):
    """Snapshot of a video held in the Metadata Store."""
    id: str
    status: ProcessingStatus
    filename: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = Field(None, alias="contentType")
    url: Optional[str] = None
    qualities: list[QualityInfo] = Field(default_factory=list)
    files: list[StoredFile] = Field(default_factory=list)
    is_original: bool = Field(False, alias="isOriginal")
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=datetime.utcnow, alias="updatedAt")

    class Config:
        populate_by_name = True


class ProcessRequest(BaseModel):
    """Request to transcode an uploaded video."""
    video_id: str = Field(..., alias="videoId", min_length=1)
    source_path: Optional[str] = Field(
        None,
        alias="sourcePath",
        description="Blob Store key of the source; the local upload directory is searched when omitted",
    )

    class Config:
        populate_by_name = True


class ProcessResponse(BaseModel):
    """Result of a processing run."""
    success: bool = True
    video_id: str = Field(..., alias="videoId")
    url: str
    qualities: list[QualityInfo] = Field(default_factory=list)
    is_original: bool = Field(False, alias="isOriginal")

    class Config:
        populate_by_name = True


class ProcessQueuedResponse(BaseModel):
    """Returned when processing was handed to a background worker."""
    success: bool = True
    video_id: str = Field(..., alias="videoId")
    task_id: str = Field(..., alias="taskId")
    status: ProcessingStatus = ProcessingStatus.PROCESSING

    class Config:
        populate_by_name = True
