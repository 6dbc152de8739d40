from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Optional


class FFmpeg:
    """Audio conversions done by piping synthesized speech through ffmpeg."""

    def __init__(self, binary: str = "ffmpeg", logger: Optional[logging.Logger] = None) -> None:
        self.binary = binary
        self.log = logger or logging.getLogger(__name__)

    def _run(self, audio: bytes, args: list[str], output: Path) -> Path:
        cmd = [self.binary, "-y", "-hide_banner", "-loglevel", "error", "-i", "pipe:0", *args, str(output)]
        try:
            subprocess.run(cmd, input=audio, check=True, capture_output=True)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise RuntimeError(f"ffmpeg exited with {exc.returncode}: {stderr}") from exc
        return output

    async def save_normalized_audio(self, audio: bytes, output: Path) -> Path:
        """16 kHz mono PCM wav, the input format the transcriber expects."""
        await asyncio.to_thread(self._run, audio, ["-ar", "16000", "-ac", "1", "-c:a", "pcm_s16le"], output)
        self.log.debug("normalized audio saved", extra={"path": str(output)})
        return output

    async def save_to_mp3(self, audio: bytes, output: Path) -> Path:
        await asyncio.to_thread(self._run, audio, ["-c:a", "libmp3lame", "-b:a", "128k"], output)
        self.log.debug("mp3 audio saved", extra={"path": str(output)})
        return output
