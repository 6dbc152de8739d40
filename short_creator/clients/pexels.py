from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Collection, List, Optional, Sequence

import httpx

from short_creator.models.domain import Orientation

FALLBACK_TERMS = ("nature", "globe", "space", "ocean")


@dataclass
class StockVideo:
    id: str
    url: str
    width: int
    height: int
    duration: float


class PexelsClient:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.pexels.com",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._rng = rng or random.Random()
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    async def find_video(
        self,
        search_terms: Sequence[str],
        min_duration: float,
        exclude_ids: Collection[str],
        orientation: Orientation,
    ) -> StockVideo:
        """Pick a random clip at least ``min_duration`` long that is not in ``exclude_ids``."""
        if not self.enabled():
            raise RuntimeError("Pexels API key is not configured")
        terms = [term for term in search_terms if term and term.strip()]
        self._rng.shuffle(terms)
        excluded = {str(item) for item in exclude_ids}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for term in [*terms, *FALLBACK_TERMS]:
                videos = await self._search(client, term, orientation)
                candidates = [
                    video
                    for video in (self._pick_file(item, orientation) for item in videos)
                    if video is not None and video.id not in excluded and video.duration >= min_duration
                ]
                if candidates:
                    choice = self._rng.choice(candidates)
                    self.log.debug(
                        "stock video selected",
                        extra={"term": term, "video_id": choice.id, "candidates": len(candidates)},
                    )
                    return choice
                self.log.debug("no stock video for term", extra={"term": term})
        raise RuntimeError(f"no stock video found for terms {list(search_terms)!r}")

    async def _search(self, client: httpx.AsyncClient, term: str, orientation: Orientation) -> List[dict[str, Any]]:
        response = await client.get(
            f"{self.base_url}/videos/search",
            params={"query": term, "orientation": orientation.value, "size": "medium", "per_page": 80},
            headers={"Authorization": self.api_key},
        )
        response.raise_for_status()
        return response.json().get("videos", [])

    def _pick_file(self, item: dict[str, Any], orientation: Orientation) -> Optional[StockVideo]:
        width, height = orientation.size
        duration = float(item.get("duration") or 0)
        files = sorted(item.get("video_files", []), key=lambda entry: entry.get("width") or 0, reverse=True)
        for entry in files:
            if entry.get("quality") != "hd" or not entry.get("link"):
                continue
            if entry.get("width") == width and entry.get("height") == height:
                return StockVideo(
                    id=str(item.get("id")),
                    url=entry["link"],
                    width=width,
                    height=height,
                    duration=duration,
                )
        return None
