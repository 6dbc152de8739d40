from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Optional

import httpx
from moviepy import AudioFileClip


@dataclass
class SynthesizedSpeech:
    audio: bytes
    duration: float


def measure_audio_duration(audio: bytes, suffix: str = ".mp3") -> float:
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        tmp.write(audio)
        tmp_path = tmp.name
    try:
        clip = AudioFileClip(tmp_path)
        duration = clip.duration
        clip.close()
        return float(duration)
    finally:
        os.remove(tmp_path)


class ElevenLabsClient:
    def __init__(
        self,
        api_key: str | None,
        voice_id: str | None,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.voice_id = (voice_id or "").strip()
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self, voice: str | None = None) -> bool:
        return bool(self.api_key and (voice or self.voice_id).strip())

    async def synthesize(self, text: str, voice: str | None = None) -> SynthesizedSpeech:
        if not self.enabled(voice):
            raise RuntimeError("ElevenLabs client is not configured")
        voice_id = (voice or self.voice_id).strip()
        url = f"{self.base_url}/v1/text-to-speech/{voice_id}"
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            audio = response.content
        duration = await asyncio.to_thread(measure_audio_duration, audio)
        self.log.info(
            "elevenlabs synthesis completed",
            extra={
                "voice_id": voice_id,
                "model_id": self.model_id,
                "content_length": len(audio),
                "duration": duration,
            },
        )
        return SynthesizedSpeech(audio=audio, duration=duration)
