from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional

import whisper

from short_creator.models.domain import Caption


def words_to_captions(segments: List[dict[str, Any]]) -> List[Caption]:
    captions: List[Caption] = []
    for segment in segments:
        words = segment.get("words") or []
        if not words:
            text = (segment.get("text") or "").strip()
            if text:
                captions.append(
                    Caption(
                        text=text,
                        start_ms=int(round(segment["start"] * 1000)),
                        end_ms=int(round(segment["end"] * 1000)),
                    )
                )
            continue
        for word in words:
            text = (word.get("word") or "").strip()
            if not text:
                continue
            captions.append(
                Caption(
                    text=text,
                    start_ms=int(round(word["start"] * 1000)),
                    end_ms=int(round(word["end"] * 1000)),
                )
            )
    return captions


class LocalWhisperClient:
    def __init__(
        self,
        model_name: str = "base.en",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.model_name = model_name
        self.log = logger or logging.getLogger(__name__)
        self._model = None

    def _load_model(self):
        if self._model is None:
            self._model = whisper.load_model(self.model_name)
            self.log.info("local whisper model loaded", extra={"model": self.model_name})
        return self._model

    def _transcribe(self, audio_path: Path) -> List[Caption]:
        model = self._load_model()
        result = model.transcribe(str(audio_path), task="transcribe", word_timestamps=True, verbose=False)
        captions = words_to_captions(result.get("segments", []))
        self.log.info(
            "whisper transcription completed (local)",
            extra={"model": self.model_name, "segments": len(result.get("segments", [])), "captions": len(captions)},
        )
        return captions

    async def create_captions(self, audio_path: Path) -> List[Caption]:
        return await asyncio.to_thread(self._transcribe, audio_path)
