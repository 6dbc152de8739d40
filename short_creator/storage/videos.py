from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional


class VideoStore:
    """Final outputs on disk, one ``<job id>.mp4`` per finished job."""

    suffix = ".mp4"

    def __init__(self, videos_dir: Path, logger: Optional[logging.Logger] = None) -> None:
        self.videos_dir = videos_dir
        self.log = logger or logging.getLogger(__name__)

    def path(self, job_id: str) -> Path:
        return self.videos_dir / f"{job_id}{self.suffix}"

    def exists(self, job_id: str) -> bool:
        return self.path(job_id).is_file()

    def read(self, job_id: str) -> bytes:
        path = self.path(job_id)
        if not path.is_file():
            raise ValueError(f"Video {job_id} not found")
        return path.read_bytes()

    def delete(self, job_id: str) -> bool:
        path = self.path(job_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self.log.debug("deleted video file", extra={"job_id": job_id})
        return True

    def list_ids(self) -> List[str]:
        if not self.videos_dir.exists():
            return []
        return sorted(item.stem for item in self.videos_dir.glob(f"*{self.suffix}") if item.is_file())
