from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from short_creator.clients.downloader import FileDownloader
from short_creator.clients.ffmpeg import FFmpeg
from short_creator.clients.pexels import PexelsClient
from short_creator.clients.poller import TaskPoller
from short_creator.clients.tts import ElevenLabsClient
from short_creator.clients.veo import VeoClient
from short_creator.clients.whisper import LocalWhisperClient
from short_creator.config import Settings, get_settings
from short_creator.models.api import (
    DeleteResponse,
    ImageUploadRequest,
    ImageUploadResponse,
    MusicTagsResponse,
    ShortVideoRequest,
    ShortVideoResponse,
    VideoListResponse,
    VideoStatus,
    VideoStatusResponse,
    VideoSummary,
    VoiceInfo,
    VoiceListResponse,
)
from short_creator.queue.queue import JobQueue
from short_creator.services.composer import MoviePyCompositor
from short_creator.services.music import MusicManager
from short_creator.services.scene_processor import SceneProcessor
from short_creator.services.short_creator import ShortCreator
from short_creator.storage.repository import JobRepository
from short_creator.storage.temp_files import TempResourceTracker, prune_expired
from short_creator.storage.videos import VideoStore

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

_repo = JobRepository()
_queue: JobQueue | None = None

UPLOAD_PREFIX = "upload_"


@asynccontextmanager
async def lifespan(_: FastAPI):
    global _queue
    settings.ensure_dirs()
    yield
    if _queue is not None:
        await _queue.stop()
        _queue = None


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.mount("/api/tmp", StaticFiles(directory=settings.temp_dir, check_dir=False), name="tmp")
app.mount("/static", StaticFiles(directory=settings.static_dir, check_dir=False), name="static")


def build_job_queue(settings: Settings) -> JobQueue:
    """Wire the clients, the pipeline and the single-lane queue together."""
    settings.ensure_dirs()
    temp_files = TempResourceTracker(settings.temp_dir)
    videos = VideoStore(settings.videos_dir)
    downloader = FileDownloader(timeout=settings.asset_download_timeout)
    poller = TaskPoller(interval=settings.veo_poll_interval, max_attempts=settings.veo_max_poll_attempts)
    veo = VeoClient(
        api_key=settings.kie_api_key,
        base_url=settings.veo_base_url,
        upload_url=settings.veo_upload_url,
        poller=poller,
        timeout=settings.veo_request_timeout,
        retry_base_delay=settings.veo_retry_base_delay,
        retry_max_delay=settings.veo_retry_max_delay,
    )
    scene_processor = SceneProcessor(
        settings=settings,
        tts=ElevenLabsClient(
            api_key=settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            base_url=settings.elevenlabs_base_url,
        ),
        whisper=LocalWhisperClient(model_name=settings.whisper_local_model),
        ffmpeg=FFmpeg(binary=settings.ffmpeg_binary),
        pexels=PexelsClient(api_key=settings.pexels_api_key, base_url=settings.pexels_base_url),
        veo=veo,
        downloader=downloader,
        temp_files=temp_files,
    )
    creator = ShortCreator(
        scene_processor=scene_processor,
        compositor=MoviePyCompositor(settings, videos, downloader, temp_files),
        music=get_music_manager(settings),
        videos=videos,
        downloader=downloader,
    )
    return JobQueue(
        processor=creator.create_short,
        repo=_repo,
        videos=videos,
        temp_files=temp_files,
        history_limit=settings.job_history_limit,
    )


async def get_job_queue(settings: Settings = Depends(get_settings)) -> JobQueue:
    global _queue
    if _queue is None:
        _queue = build_job_queue(settings)
    _queue.start()
    return _queue


def get_music_manager(settings: Settings = Depends(get_settings)) -> MusicManager:
    return MusicManager(settings.music_catalog, settings.music_dir)


@app.post("/api/short-video", response_model=ShortVideoResponse, status_code=status.HTTP_201_CREATED)
async def create_short_video(
    payload: ShortVideoRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> ShortVideoResponse:
    try:
        video_id = queue.submit(payload.scenes, payload.config)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.info("short video requested", extra={"job_id": video_id, "scenes": len(payload.scenes)})
    return ShortVideoResponse(video_id=video_id)


@app.get("/api/short-video/{video_id}/status", response_model=VideoStatusResponse)
async def get_short_video_status(video_id: str, queue: JobQueue = Depends(get_job_queue)) -> VideoStatusResponse:
    try:
        detail = queue.status_detail(video_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return VideoStatusResponse(status=VideoStatus.from_job_status(detail.status), error=detail.error)


@app.get("/api/short-videos", response_model=VideoListResponse)
async def list_short_videos(queue: JobQueue = Depends(get_job_queue)) -> VideoListResponse:
    items = [VideoSummary(id=item.id, status=VideoStatus.from_job_status(item.status)) for item in queue.list()]
    return VideoListResponse(videos=items)


@app.get("/api/short-video/{video_id}")
async def get_short_video(video_id: str, queue: JobQueue = Depends(get_job_queue)) -> FileResponse:
    if not queue.videos.exists(video_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return FileResponse(queue.videos.path(video_id), media_type="video/mp4", filename=f"{video_id}.mp4")


@app.delete("/api/short-video/{video_id}", response_model=DeleteResponse)
async def delete_short_video(video_id: str, queue: JobQueue = Depends(get_job_queue)) -> DeleteResponse:
    try:
        removed = queue.delete(video_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return DeleteResponse(success=True)


@app.get("/api/music-tags", response_model=MusicTagsResponse)
async def list_music_tags(music: MusicManager = Depends(get_music_manager)) -> MusicTagsResponse:
    return MusicTagsResponse(tags=music.list_tags())


@app.get("/api/voices", response_model=VoiceListResponse)
async def list_voices(settings: Settings = Depends(get_settings)) -> VoiceListResponse:
    items = []
    for entry in settings.voice_catalog:
        voice_id = (entry.get("voice_id") or entry.get("id") or "").strip()
        if not voice_id:
            continue
        items.append(
            VoiceInfo(
                voice_id=voice_id,
                name=entry.get("name"),
                description=entry.get("description"),
                preview_url=entry.get("preview_url"),
            )
        )
    return VoiceListResponse(items=items)


@app.post("/api/images", response_model=ImageUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    payload: ImageUploadRequest,
    settings: Settings = Depends(get_settings),
) -> ImageUploadResponse:
    header, encoded = payload.data.split(",", 1)
    mime = header[len("data:"):].split(";", 1)[0]
    if not mime.startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="only image uploads are supported")
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid base64 payload") from exc
    extension = mimetypes.guess_extension(mime) or ".png"
    settings.ensure_dirs()
    prune_expired(settings.temp_dir, f"{UPLOAD_PREFIX}*", settings.upload_ttl_seconds)
    name = f"{UPLOAD_PREFIX}{uuid4().hex}{extension}"
    (settings.temp_dir / name).write_bytes(data)
    logger.info("image uploaded", extra={"file": name, "size": len(data)})
    return ImageUploadResponse(url=settings.temp_url(name))
