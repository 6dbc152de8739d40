from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Optional

from short_creator.models.domain import MusicTrack


class MusicManager:
    def __init__(
        self,
        catalog: list[dict[str, str]],
        music_dir: Path,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.catalog = catalog or []
        self.music_dir = music_dir
        self._rng = rng or random.Random()
        self.log = logger or logging.getLogger(__name__)

    def music_list(self) -> list[MusicTrack]:
        items: list[MusicTrack] = []
        for entry in self.catalog:
            file = (entry.get("file") or entry.get("name") or "").strip()
            if not file:
                continue
            path = Path(file)
            if not path.is_absolute():
                path = self.music_dir / path
            items.append(
                MusicTrack(
                    file=str(path),
                    mood=(entry.get("mood") or "").strip() or None,
                    start=float(entry.get("start") or 0.0),
                    end=float(entry["end"]) if entry.get("end") else None,
                )
            )
        return items

    def select(self, mood: str | None = None) -> MusicTrack | None:
        tracks = [track for track in self.music_list() if not mood or track.mood == mood]
        if not tracks:
            self.log.warning("no music matches the requested mood", extra={"mood": mood})
            return None
        return self._rng.choice(tracks)

    def list_tags(self) -> list[str]:
        tags: list[str] = []
        for track in self.music_list():
            if track.mood and track.mood not in tags:
                tags.append(track.mood)
        return tags
