from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import subprocess
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import urlparse

from moviepy import AudioFileClip, CompositeAudioClip, ImageClip, VideoFileClip, afx, concatenate_videoclips, vfx

from short_creator.clients.downloader import FileDownloader
from short_creator.config import Settings
from short_creator.models.domain import (
    CaptionPosition,
    CompositionConfig,
    MusicTrack,
    MusicVolume,
    Orientation,
    SceneResult,
)
from short_creator.services.scene_processor import local_media_path
from short_creator.storage.temp_files import TempResourceTracker
from short_creator.storage.videos import VideoStore

_ALIGNMENT = {
    CaptionPosition.TOP: 8,
    CaptionPosition.CENTER: 5,
    CaptionPosition.BOTTOM: 2,
}


def format_timestamp(milliseconds: int) -> str:
    total_ms = max(0, int(milliseconds))
    hours = total_ms // 3_600_000
    minutes = (total_ms % 3_600_000) // 60_000
    secs = (total_ms % 60_000) // 1000
    millis = total_ms % 1000
    return f"{hours:02}:{minutes:02}:{secs:02},{millis:03}"


def build_srt(scenes: List[SceneResult]) -> str:
    """Captions of all scenes shifted onto the final timeline."""
    entries: list[str] = []
    offset_ms = 0
    for scene in scenes:
        for caption in scene.captions:
            start = offset_ms + caption.start_ms
            end = offset_ms + max(caption.end_ms, caption.start_ms)
            entries.append(
                f"{len(entries) + 1}\n{format_timestamp(start)} --> {format_timestamp(end)}\n{caption.text}\n"
            )
        offset_ms += int(round(scene.audio.duration * 1000))
    return "\n".join(entries)


def ass_color(value: str) -> str:
    hex_value = value.lstrip("#")
    if len(hex_value) != 6:
        return "&H00FFFFFF"
    r = hex_value[0:2]
    g = hex_value[2:4]
    b = hex_value[4:6]
    return f"&H00{b}{g}{r}".upper()


def caption_force_style(config: CompositionConfig) -> str:
    parts = [f"Alignment={_ALIGNMENT[config.caption_position]}", "Fontsize=18", "Bold=-1"]
    if config.caption_background_color:
        parts.append("BorderStyle=3")
        parts.append(f"BackColour={ass_color(config.caption_background_color)}")
    return ",".join(parts)


class MoviePyCompositor:
    """Final compositing: scene clips + narration + music, then caption burn-in."""

    def __init__(
        self,
        settings: Settings,
        videos: VideoStore,
        downloader: FileDownloader,
        temp_files: TempResourceTracker,
        fps: int = 25,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self.videos = videos
        self.downloader = downloader
        self.temp_files = temp_files
        self.fps = fps
        self.log = logger or logging.getLogger(__name__)

    async def compose(
        self,
        scenes: List[SceneResult],
        music: MusicTrack | None,
        config: CompositionConfig,
        job_id: str,
        orientation: Orientation,
    ) -> Path:
        self.log.info(
            "rendering video",
            extra={
                "job_id": job_id,
                "scenes": len(scenes),
                "duration_ms": config.duration_ms,
                "music": music.file if music else None,
            },
        )
        sources: list[Path] = []
        for scene in scenes:
            if scene.video_path:
                sources.append(Path(scene.video_path))
            else:
                sources.append(await self._still_image(job_id, scene.image_url or ""))

        output = self.videos.path(job_id)
        rendered = self.temp_files.allocate(job_id, ".mp4", f"{job_id}_render")
        await asyncio.to_thread(self._render, scenes, sources, music, config, orientation, rendered)

        subtitles_text = build_srt(scenes)
        if not subtitles_text.strip():
            os.replace(rendered, output)
            return output
        subtitles = self.temp_files.allocate(job_id, ".srt", f"{job_id}_captions")
        subtitles.write_text(subtitles_text, encoding="utf-8")
        await asyncio.to_thread(self._burn_captions, job_id, rendered, subtitles, config, output)
        return output

    async def _still_image(self, job_id: str, image_url: str) -> Path:
        local = local_media_path(self.settings, image_url)
        if local is not None:
            return local
        suffix = pathlib.PurePosixPath(urlparse(image_url).path).suffix or ".png"
        path = self.temp_files.allocate(job_id, suffix)
        await self.downloader.download(image_url, path)
        return path

    def _render(
        self,
        scenes: List[SceneResult],
        sources: List[Path],
        music: MusicTrack | None,
        config: CompositionConfig,
        orientation: Orientation,
        output: Path,
    ) -> None:
        size = orientation.size
        opened: list[Any] = []
        clips = []
        try:
            for scene, source in zip(scenes, sources):
                duration = scene.audio.duration
                if scene.video_path:
                    clip = VideoFileClip(str(source)).without_audio()
                    opened.append(clip)
                    if clip.duration < duration:
                        clip = clip.with_effects([vfx.Loop(duration=duration)])
                    else:
                        clip = clip.subclipped(0, duration)
                else:
                    clip = ImageClip(str(source)).with_duration(duration)
                clip = clip.resized(new_size=size)
                voice = AudioFileClip(scene.audio.path)
                opened.append(voice)
                if voice.duration > duration:
                    voice = voice.subclipped(0, duration)
                clips.append(clip.with_audio(voice))

            video = concatenate_videoclips(clips, method="compose")
            target = config.duration_ms / 1000
            if music and config.music_volume != MusicVolume.MUTED:
                track = AudioFileClip(music.file)
                opened.append(track)
                track = track.subclipped(music.start, music.end or track.duration)
                if track.duration < target:
                    track = track.with_effects([afx.AudioLoop(duration=target)])
                else:
                    track = track.subclipped(0, target)
                track = track.with_volume_scaled(config.music_volume.factor)
                layers = [video.audio, track] if video.audio is not None else [track]
                video = video.with_audio(CompositeAudioClip(layers))
            video.write_videofile(
                str(output),
                fps=self.fps,
                codec="libx264",
                audio_codec="aac",
                ffmpeg_params=["-pix_fmt", "yuv420p"],
                logger=None,
            )
            video.close()
        finally:
            for resource in opened:
                try:
                    resource.close()
                except Exception:  # pragma: no cover
                    self.log.debug("clip close failed", exc_info=True)

    def _burn_captions(
        self,
        job_id: str,
        rendered: Path,
        subtitles: Path,
        config: CompositionConfig,
        output: Path,
    ) -> None:
        vf = f"subtitles='{subtitles.as_posix()}':force_style='{caption_force_style(config)}'"
        cmd = [
            self.settings.ffmpeg_binary,
            "-y",
            "-i",
            str(rendered),
            "-vf",
            vf,
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "copy",
            str(output),
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except subprocess.CalledProcessError as exc:
            self.log.warning("ffmpeg caption burn-in failed", extra={"job_id": job_id}, exc_info=exc)
            os.replace(rendered, output)
