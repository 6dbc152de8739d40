from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.FAILED)


class ErrorKind(str, Enum):
    CONTENT_POLICY_VIOLATION = "content_policy_violation"
    PROVIDER_REQUEST_FAILED = "provider_request_failed"
    PROVIDER_TIMEOUT = "provider_timeout"
    PIPELINE_STAGE_FAILED = "pipeline_stage_failed"


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"

    @property
    def aspect_ratio(self) -> str:
        return "9:16" if self is Orientation.PORTRAIT else "16:9"

    @property
    def size(self) -> tuple[int, int]:
        return (1080, 1920) if self is Orientation.PORTRAIT else (1920, 1080)


class VisualKind(str, Enum):
    STOCK = "stock"
    GENERATED = "generated"
    UPLOAD = "upload"


class MusicVolume(str, Enum):
    MUTED = "muted"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def factor(self) -> float:
        return {"muted": 0.0, "low": 0.2, "medium": 0.45, "high": 0.7}[self.value]


class CaptionPosition(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class VisualInput(BaseModel):
    type: VisualKind
    value: str


class SceneSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    search_terms: List[str] = Field(default_factory=list)
    image_input: Optional[VisualInput] = None
    veo_prompt: Optional[str] = None
    end_image_input: Optional[VisualInput] = None

    @property
    def provider_image(self) -> Optional[str]:
        """Image the provider should animate, or None for the stock-search branch."""
        if self.image_input is None or self.image_input.type == VisualKind.STOCK:
            return None
        return self.image_input.value.strip() or None

    @property
    def motion_prompt(self) -> str:
        return self.veo_prompt or self.text or ", ".join(self.search_terms)


class RenderConfig(BaseModel):
    padding_back: Optional[int] = Field(default=None, ge=0, description="Trailing pad in milliseconds")
    music: Optional[str] = None
    music_volume: MusicVolume = MusicVolume.HIGH
    caption_position: CaptionPosition = CaptionPosition.BOTTOM
    caption_background_color: Optional[str] = None
    voice: Optional[str] = None
    orientation: Orientation = Orientation.PORTRAIT
    veo_only: bool = False
    veo_model: Optional[str] = None
    veo_max_retries: Optional[int] = Field(default=None, ge=0)

    @property
    def padding_seconds(self) -> float:
        return (self.padding_back or 0) / 1000


class JobError(BaseModel):
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    provider_code: Optional[int] = None
    provider_message: Optional[str] = None
    prompt: Optional[str] = None


class Job(BaseModel):
    id: str
    scenes: List[SceneSpec]
    config: RenderConfig
    status: JobStatus = JobStatus.QUEUED
    error: Optional[JobError] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Caption(BaseModel):
    text: str
    start_ms: int
    end_ms: int


class SceneAudio(BaseModel):
    path: str
    url: str
    duration: float


class SceneResult(BaseModel):
    captions: List[Caption]
    audio: SceneAudio
    video_path: Optional[str] = None
    video_url: Optional[str] = None
    image_url: Optional[str] = None

    @model_validator(mode="after")
    def check_single_visual(self) -> "SceneResult":
        if bool(self.video_path) == bool(self.image_url):
            raise ValueError("scene result needs exactly one of video or still image")
        return self


class MusicTrack(BaseModel):
    file: str
    mood: Optional[str] = None
    start: float = 0.0
    end: Optional[float] = None


class TaskState(str, Enum):
    SUBMITTED = "submitted"
    GENERATING = "generating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class ExternalTask:
    task_id: str
    prompt: str
    state: TaskState = TaskState.SUBMITTED
    attempts: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    result_url: Optional[str] = None


class CompositionConfig(BaseModel):
    duration_ms: int
    padding_back: Optional[int] = None
    caption_position: CaptionPosition = CaptionPosition.BOTTOM
    caption_background_color: Optional[str] = None
    music_volume: MusicVolume = MusicVolume.HIGH


class JobSummary(BaseModel):
    id: str
    status: JobStatus


class JobStatusDetail(BaseModel):
    status: JobStatus
    error: Optional[JobError] = None
