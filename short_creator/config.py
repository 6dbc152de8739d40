from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SHORT_CREATOR_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "short-creator"
    log_level: str = "INFO"

    data_dir: Path = Path.home() / ".short-creator"
    static_dir: Path = Path("static")
    music_dir: Path = Path("static") / "music"
    public_base_url: str = "http://localhost:3123"

    # Generative video provider
    kie_api_key: str = ""
    veo_base_url: str = "https://api.kie.ai/api/v1"
    veo_upload_url: str = "https://kieai.redpandaai.co/api/file-stream-upload"
    veo_model: str = "veo3"
    veo_max_retries: int = 2
    veo_retry_base_delay: float = 2.0
    veo_retry_max_delay: float = 30.0
    veo_poll_interval: float = 5.0
    veo_max_poll_attempts: int = 40
    veo_request_timeout: float = 30.0

    pexels_api_key: str = ""
    pexels_base_url: str = "https://api.pexels.com"

    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    whisper_local_model: str = "base.en"
    ffmpeg_binary: str = "ffmpeg"

    asset_download_timeout: float = 60.0
    job_history_limit: int = 200
    upload_ttl_seconds: float = 24 * 60 * 60
    music_catalog: list[dict[str, str]] = Field(default_factory=list)
    voice_catalog: list[dict[str, str]] = Field(default_factory=list)

    @property
    def videos_dir(self) -> Path:
        return self.data_dir / "videos"

    @property
    def temp_dir(self) -> Path:
        return self.data_dir / "temp"

    def ensure_dirs(self) -> None:
        for path in (self.data_dir, self.videos_dir, self.temp_dir):
            path.mkdir(parents=True, exist_ok=True)

    def temp_url(self, filename: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/tmp/{filename}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
