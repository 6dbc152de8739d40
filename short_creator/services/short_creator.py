from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from short_creator.clients.downloader import FileDownloader
from short_creator.errors import PipelineError
from short_creator.models.domain import CompositionConfig, Job, SceneResult
from short_creator.services.composer import MoviePyCompositor
from short_creator.services.music import MusicManager
from short_creator.services.scene_processor import SceneProcessor, pipeline_stage
from short_creator.storage.videos import VideoStore


def timeline_duration(scenes: List[SceneResult]) -> float:
    """Total length of the final video.

    The last scene's duration already carries the trailing pad, so the sum of
    the scene durations equals the narration length plus the pad.
    """
    return sum(scene.audio.duration for scene in scenes)


class ShortCreator:
    """Runs one job end to end; errors propagate to the queue's job boundary."""

    def __init__(
        self,
        scene_processor: SceneProcessor,
        compositor: MoviePyCompositor,
        music: MusicManager,
        videos: VideoStore,
        downloader: FileDownloader,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.scene_processor = scene_processor
        self.compositor = compositor
        self.music = music
        self.videos = videos
        self.downloader = downloader
        self.log = logger or logging.getLogger(__name__)

    async def create_short(self, job: Job) -> Path:
        self.log.debug(
            "creating short video",
            extra={"job_id": job.id, "scenes": len(job.scenes), "veo_only": job.config.veo_only},
        )
        if job.config.veo_only:
            return await self._create_veo_only_short(job)
        return await self._create_composed_short(job)

    async def _create_composed_short(self, job: Job) -> Path:
        results: List[SceneResult] = []
        used_video_ids: List[str] = []
        last = len(job.scenes) - 1
        for index, scene in enumerate(job.scenes):
            result = await self.scene_processor.process(
                job.id,
                index,
                scene,
                job.config,
                is_last=index == last,
                used_video_ids=used_video_ids,
            )
            results.append(result)
        if len(results) != len(job.scenes):
            raise PipelineError.stage_failed(
                "composition",
                f"expected {len(job.scenes)} scene results, got {len(results)}",
            )

        duration = timeline_duration(results)
        music = self.music.select(job.config.music)
        self.log.debug(
            "selected music for the video",
            extra={"job_id": job.id, "music": music.file if music else None, "duration": duration},
        )
        composition = CompositionConfig(
            duration_ms=int(round(duration * 1000)),
            padding_back=job.config.padding_back,
            caption_position=job.config.caption_position,
            caption_background_color=job.config.caption_background_color,
            music_volume=job.config.music_volume,
        )
        with pipeline_stage("composition"):
            return await self.compositor.compose(results, music, composition, job.id, job.config.orientation)

    async def _create_veo_only_short(self, job: Job) -> Path:
        """Animate the first scene's image and store the provider's video as the final output."""
        scene = job.scenes[0]
        image = scene.provider_image
        if not image:
            raise PipelineError.stage_failed("provider video", "provider-only mode requires an image input")
        result_url = await self.scene_processor.generate_video(scene, image, job.config)
        output = self.videos.path(job.id)
        with pipeline_stage("provider video download"):
            await self.downloader.download(result_url, output)
        self.log.info("provider-only video created", extra={"job_id": job.id, "path": str(output)})
        return output
