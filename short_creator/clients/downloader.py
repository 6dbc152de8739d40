from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import httpx


class FileDownloader:
    def __init__(
        self,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout = httpx.Timeout(connect=10.0, read=max(10.0, timeout), write=10.0, pool=max(10.0, timeout))
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    async def download(self, url: str, path: Path) -> Path:
        """Stream ``url`` into ``path``; a partially written file is removed on error."""
        self.log.debug("downloading file", extra={"url": url, "path": str(path)})
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, follow_redirects=True) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(path, "wb") as handle:
                        async for chunk in response.aiter_bytes():
                            if chunk:
                                handle.write(chunk)
        except (httpx.HTTPError, OSError):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            self.log.warning("download failed", extra={"url": url, "path": str(path)}, exc_info=True)
            raise
        self.log.debug("download completed", extra={"url": url, "path": str(path)})
        return path
