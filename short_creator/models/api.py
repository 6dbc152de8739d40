from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .domain import JobError, JobStatus, RenderConfig, SceneSpec


class VideoStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @classmethod
    def from_job_status(cls, status: JobStatus) -> "VideoStatus":
        if status in (JobStatus.QUEUED, JobStatus.PROCESSING):
            return cls.PROCESSING
        return cls(status.value)


class ShortVideoRequest(BaseModel):
    scenes: List[SceneSpec] = Field(..., min_length=1)
    config: RenderConfig = Field(default_factory=RenderConfig)


class ShortVideoResponse(BaseModel):
    video_id: str


class VideoStatusResponse(BaseModel):
    status: VideoStatus
    error: Optional[JobError] = None


class VideoSummary(BaseModel):
    id: str
    status: VideoStatus


class VideoListResponse(BaseModel):
    videos: List[VideoSummary]


class DeleteResponse(BaseModel):
    success: bool


class MusicTagsResponse(BaseModel):
    tags: List[str]


class VoiceInfo(BaseModel):
    voice_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    preview_url: Optional[str] = None


class VoiceListResponse(BaseModel):
    items: List[VoiceInfo]


class ImageUploadRequest(BaseModel):
    data: str = Field(..., description="Image as a data url: data:<mime>;base64,<payload>")

    @field_validator("data")
    @classmethod
    def validate_data_url(cls, value: str) -> str:
        if not value.startswith("data:") or ";base64," not in value:
            raise ValueError("image must be a base64 data url")
        return value


class ImageUploadResponse(BaseModel):
    url: str
