from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional
from urllib.parse import urlparse
from uuid import uuid4

import httpx

from short_creator.clients.downloader import FileDownloader
from short_creator.clients.ffmpeg import FFmpeg
from short_creator.clients.pexels import PexelsClient
from short_creator.clients.tts import ElevenLabsClient
from short_creator.clients.veo import VeoClient
from short_creator.clients.whisper import LocalWhisperClient
from short_creator.config import Settings
from short_creator.errors import PipelineError
from short_creator.models.domain import RenderConfig, SceneAudio, SceneResult, SceneSpec
from short_creator.storage.temp_files import TempResourceTracker

LOCAL_HOSTS = ("localhost", "127.0.0.1")


@contextmanager
def pipeline_stage(stage: str) -> Iterator[None]:
    try:
        yield
    except PipelineError:
        raise
    except Exception as exc:
        raise PipelineError.stage_failed(stage, str(exc) or exc.__class__.__name__) from exc


def local_media_path(settings: Settings, url: str) -> Optional[Path]:
    """Map a url served by this service (temp or static files) back to its file."""
    parsed = urlparse(url)
    own_base = urlparse(settings.public_base_url)
    if parsed.hostname not in LOCAL_HOSTS and parsed.netloc != own_base.netloc:
        return None
    name = PurePosixPath(parsed.path).name
    if parsed.path.startswith("/static/"):
        return settings.static_dir / name
    if parsed.path.startswith("/api/tmp/"):
        return settings.temp_dir / name
    raise PipelineError.stage_failed("image lookup", f"unsupported url path: {parsed.path}")


@dataclass
class VisualResult:
    """Outcome of acquiring a scene's visual track: a video, a still image or an error."""

    video_path: Optional[Path] = None
    video_url: Optional[str] = None
    image_url: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def video(cls, path: Path, url: str) -> "VisualResult":
        return cls(video_path=path, video_url=url)

    @classmethod
    def still(cls, image_url: str) -> "VisualResult":
        return cls(image_url=image_url)

    @classmethod
    def failed(cls, error: BaseException) -> "VisualResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def or_still_image(self, image_url: str) -> "VisualResult":
        return self if self.ok else VisualResult.still(image_url)


class SceneProcessor:
    def __init__(
        self,
        settings: Settings,
        tts: ElevenLabsClient,
        whisper: LocalWhisperClient,
        ffmpeg: FFmpeg,
        pexels: PexelsClient,
        veo: VeoClient,
        downloader: FileDownloader,
        temp_files: TempResourceTracker,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self.tts = tts
        self.whisper = whisper
        self.ffmpeg = ffmpeg
        self.pexels = pexels
        self.veo = veo
        self.downloader = downloader
        self.temp_files = temp_files
        self.log = logger or logging.getLogger(__name__)

    async def process(
        self,
        job_id: str,
        index: int,
        scene: SceneSpec,
        config: RenderConfig,
        *,
        is_last: bool,
        used_video_ids: List[str],
    ) -> SceneResult:
        self.log.debug("processing scene", extra={"job_id": job_id, "scene": index + 1})
        with pipeline_stage("speech synthesis"):
            speech = await self.tts.synthesize(scene.text, voice=config.voice)
        duration = speech.duration
        if is_last and config.padding_back:
            duration += config.padding_seconds

        stem = uuid4().hex
        wav_path = self.temp_files.allocate(job_id, ".wav", stem)
        mp3_path = self.temp_files.allocate(job_id, ".mp3", stem)
        with pipeline_stage("transcription"):
            await self.ffmpeg.save_normalized_audio(speech.audio, wav_path)
            captions = await self.whisper.create_captions(wav_path)
        with pipeline_stage("audio encoding"):
            await self.ffmpeg.save_to_mp3(speech.audio, mp3_path)

        visual = await self._acquire_visual(job_id, stem, scene, config, duration, used_video_ids)
        return SceneResult(
            captions=captions,
            audio=SceneAudio(path=str(mp3_path), url=self.settings.temp_url(mp3_path.name), duration=duration),
            video_path=str(visual.video_path) if visual.video_path else None,
            video_url=visual.video_url,
            image_url=visual.image_url,
        )

    async def _acquire_visual(
        self,
        job_id: str,
        stem: str,
        scene: SceneSpec,
        config: RenderConfig,
        duration: float,
        used_video_ids: List[str],
    ) -> VisualResult:
        image = scene.provider_image
        if image:
            result = await self._animate_image(job_id, stem, scene, image, config)
            if not result.ok:
                self.log.warning(
                    "provider video failed, falling back to still image",
                    extra={"job_id": job_id, "image": image},
                    exc_info=result.error,
                )
            return result.or_still_image(image)
        with pipeline_stage("stock footage"):
            return await self._stock_video(job_id, stem, scene, config, duration, used_video_ids)

    async def _animate_image(
        self,
        job_id: str,
        stem: str,
        scene: SceneSpec,
        image: str,
        config: RenderConfig,
    ) -> VisualResult:
        path = self.temp_files.allocate(job_id, ".mp4", f"{stem}_veo")
        try:
            result_url = await self.generate_video(scene, image, config)
            await self.downloader.download(result_url, path)
        except (PipelineError, httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            return VisualResult.failed(exc)
        return VisualResult.video(path, self.settings.temp_url(path.name))

    async def generate_video(self, scene: SceneSpec, image: str, config: RenderConfig) -> str:
        start = await self.resolve_provider_image(image)
        end = start
        if scene.end_image_input and scene.end_image_input.value.strip():
            end = await self.resolve_provider_image(scene.end_image_input.value.strip())
        max_retries = config.veo_max_retries
        if max_retries is None:
            max_retries = self.settings.veo_max_retries
        return await self.veo.generate(
            scene.motion_prompt,
            start,
            end,
            aspect_ratio=config.orientation.aspect_ratio,
            model=config.veo_model or self.settings.veo_model,
            max_retries=max_retries,
        )

    async def resolve_provider_image(self, url: str) -> str:
        path = local_media_path(self.settings, url)
        if path is None:
            return url
        if not path.is_file():
            raise PipelineError.stage_failed("image upload", f"file not found: {path}")
        return await self.veo.upload_file(path)

    async def _stock_video(
        self,
        job_id: str,
        stem: str,
        scene: SceneSpec,
        config: RenderConfig,
        duration: float,
        used_video_ids: List[str],
    ) -> VisualResult:
        video = await self.pexels.find_video(scene.search_terms, duration, used_video_ids, config.orientation)
        if video.id in used_video_ids:
            raise PipelineError.stage_failed("stock footage", f"video {video.id} already used in this job")
        path = self.temp_files.allocate(job_id, ".mp4", stem)
        await self.downloader.download(video.url, path)
        used_video_ids.append(video.id)
        return VisualResult.video(path, self.settings.temp_url(path.name))
