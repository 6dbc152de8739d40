import asyncio

import httpx
import pytest

from conftest import FakeDownloader, FakePexels, FakeTTS, FakeVeo, make_scene_processor, stock_video
from short_creator.clients.downloader import FileDownloader
from short_creator.errors import PipelineError
from short_creator.models.domain import ErrorKind, Orientation, RenderConfig, SceneSpec, VisualInput, VisualKind
from short_creator.services.scene_processor import local_media_path


def image_scene(url="https://images.test/cat.png", **kwargs):
    return SceneSpec(text="A cat walks in", image_input=VisualInput(type=VisualKind.UPLOAD, value=url), **kwargs)


def test_trailing_pad_only_extends_the_last_scene(settings, temp_files):
    processor = make_scene_processor(settings, temp_files, tts=FakeTTS([2.0, 2.0]))
    config = RenderConfig(padding_back=1500)
    used = []

    first = asyncio.run(
        processor.process("job", 0, SceneSpec(text="one", search_terms=["a"]), config, is_last=False, used_video_ids=used)
    )
    last = asyncio.run(
        processor.process("job", 1, SceneSpec(text="two", search_terms=["b"]), config, is_last=True, used_video_ids=used)
    )

    assert first.audio.duration == 2.0
    assert last.audio.duration == 3.5


def test_scene_audio_and_captions_are_resolved(settings, temp_files):
    processor = make_scene_processor(settings, temp_files)

    result = asyncio.run(
        processor.process("job", 0, SceneSpec(text="hello world", search_terms=["city"]), RenderConfig(), is_last=True, used_video_ids=[])
    )

    assert [c.text for c in result.captions] == ["hello", "world"]
    assert result.audio.path.endswith(".mp3")
    assert result.audio.url.startswith("http://localhost:3123/api/tmp/")
    owned = {path.suffix for path in temp_files.owned("job")}
    assert {".wav", ".mp3", ".mp4"} <= owned


def test_stock_footage_is_not_reused_within_a_job(settings, temp_files):
    pexels = FakePexels([stock_video("1"), stock_video("2")])
    processor = make_scene_processor(settings, temp_files, pexels=pexels)
    used = []
    config = RenderConfig()

    first = asyncio.run(processor.process("job", 0, SceneSpec(text="one", search_terms=["x"]), config, is_last=False, used_video_ids=used))
    second = asyncio.run(processor.process("job", 1, SceneSpec(text="two", search_terms=["x"]), config, is_last=True, used_video_ids=used))

    assert used == ["1", "2"]
    assert pexels.calls[1]["exclude"] == ["1"]
    assert first.video_path != second.video_path


def test_stock_search_without_match_fails_the_stage(settings, temp_files):
    processor = make_scene_processor(settings, temp_files, pexels=FakePexels([]))

    with pytest.raises(PipelineError) as info:
        asyncio.run(processor.process("job", 0, SceneSpec(text="one", search_terms=["x"]), RenderConfig(), is_last=True, used_video_ids=[]))

    assert info.value.kind == ErrorKind.PIPELINE_STAGE_FAILED
    assert info.value.stage == "stock footage"


def test_speech_failure_is_a_stage_failure(settings, temp_files):
    processor = make_scene_processor(settings, temp_files, tts=FakeTTS(error=RuntimeError("quota exceeded")))

    with pytest.raises(PipelineError) as info:
        asyncio.run(processor.process("job", 0, SceneSpec(text="one"), RenderConfig(), is_last=True, used_video_ids=[]))

    assert info.value.stage == "speech synthesis"
    assert "quota exceeded" in info.value.message


def test_provided_image_is_animated_by_the_provider(settings, temp_files):
    veo = FakeVeo(result_url="https://cdn.test/T.mp4")
    downloader = FakeDownloader()
    processor = make_scene_processor(settings, temp_files, veo=veo, downloader=downloader)
    config = RenderConfig(orientation=Orientation.LANDSCAPE, veo_max_retries=1)

    result = asyncio.run(
        processor.process("job", 0, image_scene(veo_prompt="slow pan"), config, is_last=True, used_video_ids=[])
    )

    assert result.video_path.endswith("_veo.mp4")
    assert result.image_url is None
    assert downloader.urls == ["https://cdn.test/T.mp4"]
    call = veo.generated[0]
    assert call["prompt"] == "slow pan"
    assert call["start"] == call["end"] == "https://images.test/cat.png"
    assert call["aspect_ratio"] == "16:9"
    assert call["model"] == settings.veo_model
    assert call["max_retries"] == 1


def test_provider_failure_falls_back_to_the_still_image(settings, temp_files):
    veo = FakeVeo(error=PipelineError.content_policy("blocked by safety", "A cat walks in", status_code=400))
    processor = make_scene_processor(settings, temp_files, veo=veo)

    result = asyncio.run(processor.process("job", 0, image_scene(), RenderConfig(), is_last=True, used_video_ids=[]))

    assert result.video_path is None
    assert result.image_url == "https://images.test/cat.png"


def test_stock_image_kind_uses_stock_search(settings, temp_files):
    veo = FakeVeo()
    pexels = FakePexels([stock_video("5")])
    processor = make_scene_processor(settings, temp_files, veo=veo, pexels=pexels)
    scene = SceneSpec(text="one", search_terms=["x"], image_input=VisualInput(type=VisualKind.STOCK, value="ignored"))

    result = asyncio.run(processor.process("job", 0, scene, RenderConfig(), is_last=True, used_video_ids=[]))

    assert veo.generated == []
    assert len(pexels.calls) == 1
    assert result.video_path is not None


def test_local_images_are_uploaded_before_generation(settings, temp_files):
    (settings.temp_dir / "frame.png").write_bytes(b"png")
    veo = FakeVeo()
    processor = make_scene_processor(settings, temp_files, veo=veo)
    scene = image_scene("http://localhost:3123/api/tmp/frame.png")

    asyncio.run(processor.generate_video(scene, scene.provider_image, RenderConfig()))

    assert veo.uploaded == [settings.temp_dir / "frame.png"]
    assert veo.generated[0]["start"] == "https://uploads.test/frame.png"


def test_missing_local_image_fails(settings, temp_files):
    processor = make_scene_processor(settings, temp_files)

    with pytest.raises(PipelineError):
        asyncio.run(processor.resolve_provider_image("http://localhost:3123/static/missing.png"))


def test_local_media_path_mapping(settings):
    assert local_media_path(settings, "https://images.test/cat.png") is None
    assert local_media_path(settings, "http://localhost:3123/static/cat.png") == settings.static_dir / "cat.png"
    assert local_media_path(settings, "http://127.0.0.1:3123/api/tmp/a.mp3") == settings.temp_dir / "a.mp3"
    with pytest.raises(PipelineError):
        local_media_path(settings, "http://localhost:3123/elsewhere/cat.png")


def test_failed_result_download_falls_back_to_the_still_image(settings, temp_files):
    downloader = FileDownloader(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    veo = FakeVeo(result_url="https://cdn.test/gone.mp4")
    processor = make_scene_processor(settings, temp_files, veo=veo, downloader=downloader)

    result = asyncio.run(processor.process("job", 0, image_scene(), RenderConfig(), is_last=True, used_video_ids=[]))

    assert result.video_path is None
    assert result.image_url == "https://images.test/cat.png"
    assert len(veo.generated) == 1
    assert list(settings.temp_dir.glob("*_veo.mp4")) == []


def test_malformed_result_url_falls_back_to_the_still_image(settings, temp_files):
    class BadUrlDownloader:
        async def download(self, url, path):
            raise httpx.InvalidURL(f"invalid url: {url}")

    veo = FakeVeo(result_url="http://[not-a-host")
    processor = make_scene_processor(settings, temp_files, veo=veo, downloader=BadUrlDownloader())

    result = asyncio.run(processor.process("job", 0, image_scene(), RenderConfig(), is_last=True, used_video_ids=[]))

    assert result.video_path is None
    assert result.image_url == "https://images.test/cat.png"
