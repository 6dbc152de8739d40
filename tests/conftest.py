from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest

from short_creator.clients.pexels import StockVideo
from short_creator.clients.tts import SynthesizedSpeech
from short_creator.config import Settings
from short_creator.models.domain import Caption, Orientation
from short_creator.services.scene_processor import SceneProcessor
from short_creator.storage.temp_files import TempResourceTracker


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` and remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeTTS:
    def __init__(self, durations: Optional[List[float]] = None, error: Optional[Exception] = None) -> None:
        self.durations = list(durations or [])
        self.error = error
        self.calls: List[str] = []

    async def synthesize(self, text: str, voice: str | None = None) -> SynthesizedSpeech:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        duration = self.durations.pop(0) if self.durations else 2.0
        return SynthesizedSpeech(audio=b"speech", duration=duration)


class FakeFFmpeg:
    async def save_normalized_audio(self, audio: bytes, output: Path) -> Path:
        output.write_bytes(audio)
        return output

    async def save_to_mp3(self, audio: bytes, output: Path) -> Path:
        output.write_bytes(audio)
        return output


class FakeWhisper:
    async def create_captions(self, audio_path: Path) -> List[Caption]:
        return [Caption(text="hello", start_ms=0, end_ms=400), Caption(text="world", start_ms=400, end_ms=900)]


class FakePexels:
    def __init__(self, videos: List[StockVideo]) -> None:
        self.videos = videos
        self.calls: List[dict] = []

    async def find_video(self, search_terms, min_duration, exclude_ids, orientation: Orientation) -> StockVideo:
        self.calls.append(
            {"terms": list(search_terms), "min_duration": min_duration, "exclude": list(exclude_ids)}
        )
        for video in self.videos:
            if video.id not in exclude_ids and video.duration >= min_duration:
                return video
        raise RuntimeError("no stock video found")


class FakeDownloader:
    def __init__(self, content: bytes = b"video-bytes") -> None:
        self.content = content
        self.urls: List[str] = []

    async def download(self, url: str, path: Path) -> Path:
        self.urls.append(url)
        path.write_bytes(self.content)
        return path


class FakeVeo:
    def __init__(self, result_url: str = "https://cdn.test/result.mp4", error: Optional[Exception] = None) -> None:
        self.result_url = result_url
        self.error = error
        self.generated: List[dict] = []
        self.uploaded: List[Path] = []

    async def generate(self, prompt, start_image_url, end_image_url=None, aspect_ratio="Auto", model="veo3", max_retries=2):
        self.generated.append(
            {
                "prompt": prompt,
                "start": start_image_url,
                "end": end_image_url,
                "aspect_ratio": aspect_ratio,
                "model": model,
                "max_retries": max_retries,
            }
        )
        if self.error is not None:
            raise self.error
        return self.result_url

    async def upload_file(self, path: Path) -> str:
        self.uploaded.append(path)
        return f"https://uploads.test/{path.name}"


def stock_video(video_id: str, duration: float = 10.0) -> StockVideo:
    return StockVideo(
        id=video_id,
        url=f"https://videos.test/{video_id}.mp4",
        width=1080,
        height=1920,
        duration=duration,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    settings = Settings(
        data_dir=tmp_path / "data",
        static_dir=tmp_path / "static",
        music_dir=tmp_path / "music",
        public_base_url="http://localhost:3123",
        kie_api_key="test-key",
    )
    settings.ensure_dirs()
    settings.static_dir.mkdir(parents=True, exist_ok=True)
    return settings


@pytest.fixture
def temp_files(settings: Settings) -> TempResourceTracker:
    return TempResourceTracker(settings.temp_dir)


def make_scene_processor(
    settings: Settings,
    temp_files: TempResourceTracker,
    *,
    tts: Optional[FakeTTS] = None,
    pexels: Optional[FakePexels] = None,
    veo=None,
    downloader=None,
) -> SceneProcessor:
    return SceneProcessor(
        settings=settings,
        tts=tts or FakeTTS(),
        whisper=FakeWhisper(),
        ffmpeg=FakeFFmpeg(),
        pexels=pexels or FakePexels([stock_video("1"), stock_video("2"), stock_video("3")]),
        veo=veo or FakeVeo(),
        downloader=downloader or FakeDownloader(),
        temp_files=temp_files,
    )
