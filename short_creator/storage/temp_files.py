from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4


class TempResourceTracker:
    """Tracks transient files per job so they never outlive the job."""

    def __init__(self, temp_dir: Path, logger: Optional[logging.Logger] = None) -> None:
        self.temp_dir = temp_dir
        self.log = logger or logging.getLogger(__name__)
        self._paths: Dict[str, List[Path]] = {}
        self._lock = Lock()

    def register(self, job_id: str, path: str | Path) -> Path:
        path = Path(path)
        with self._lock:
            owned = self._paths.setdefault(job_id, [])
            if path not in owned:
                owned.append(path)
        return path

    def allocate(self, job_id: str, suffix: str, stem: str | None = None) -> Path:
        """Reserve a unique path in the temp directory owned by ``job_id``."""
        name = f"{stem or uuid4().hex}{suffix}"
        return self.register(job_id, self.temp_dir / name)

    def owned(self, job_id: str) -> List[Path]:
        with self._lock:
            return list(self._paths.get(job_id, []))

    def release_all(self, job_id: str) -> int:
        with self._lock:
            paths = self._paths.pop(job_id, [])
        removed = 0
        for path in paths:
            try:
                os.remove(path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError:
                self.log.warning(
                    "temp file removal failed",
                    extra={"job_id": job_id, "path": str(path)},
                    exc_info=True,
                )
        if paths:
            self.log.debug(
                "released temp files",
                extra={"job_id": job_id, "registered": len(paths), "removed": removed},
            )
        return removed


def prune_expired(
    directory: Path,
    pattern: str,
    max_age: float,
    now: float | None = None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Remove files matching ``pattern`` whose last modification is older than ``max_age`` seconds."""
    log = logger or logging.getLogger(__name__)
    cutoff = (time.time() if now is None else now) - max_age
    removed = 0
    for path in directory.glob(pattern):
        try:
            if path.stat().st_mtime >= cutoff:
                continue
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError:
            log.warning("expired file removal failed", extra={"path": str(path)}, exc_info=True)
    if removed:
        log.debug("expired files removed", extra={"directory": str(directory), "removed": removed})
    return removed
