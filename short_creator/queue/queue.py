from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, List, Optional, Sequence
from uuid import uuid4

from short_creator.errors import classify_error
from short_creator.models.domain import (
    Job,
    JobError,
    JobStatus,
    JobStatusDetail,
    JobSummary,
    RenderConfig,
    SceneSpec,
)
from short_creator.storage.repository import JobRepository
from short_creator.storage.temp_files import TempResourceTracker
from short_creator.storage.videos import VideoStore

Processor = Callable[[Job], Awaitable[Any]]


class JobQueue:
    """Single-lane FIFO queue.

    Submissions append to an ``asyncio.Queue`` and start the worker if it is
    idle. That one worker task is the only consumer, so at most one job is
    ever processing and jobs finish in submission order. The worker is also the job boundary: whatever the processor raises
    is classified onto the job, temp files are released on every exit path and
    the next job starts. Records of ready jobs whose output is on disk are
    dropped; the output file answers later reads.
    """

    def __init__(
        self,
        processor: Processor,
        repo: JobRepository,
        videos: VideoStore,
        temp_files: TempResourceTracker,
        history_limit: int = 200,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._processor = processor
        self.repo = repo
        self.videos = videos
        self.temp_files = temp_files
        self.history_limit = history_limit
        self.log = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._pending: Deque[str] = deque()
        self._current: Optional[str] = None
        self._worker: Optional[asyncio.Task[None]] = None

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="job-queue-worker")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def join(self) -> None:
        await self._queue.join()

    @property
    def current(self) -> Optional[str]:
        return self._current

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    def submit(self, scenes: Sequence[SceneSpec], config: RenderConfig) -> str:
        if not scenes:
            raise ValueError("at least one scene is required")
        job = Job(id=uuid4().hex, scenes=list(scenes), config=config)
        self.repo.add(job)
        self._pending.append(job.id)
        self._queue.put_nowait(job.id)
        self.log.info("job enqueued", extra={"job_id": job.id, "position": len(self._pending)})
        self.start()
        return job.id

    def status(self, job_id: str) -> JobStatus:
        return self.status_detail(job_id).status

    def status_detail(self, job_id: str) -> JobStatusDetail:
        job = self.repo.get(job_id)
        if job is not None:
            return JobStatusDetail(status=job.status, error=job.error)
        if self.videos.exists(job_id):
            return JobStatusDetail(status=JobStatus.READY)
        raise ValueError("Video job not found")

    def list(self) -> List[JobSummary]:
        statuses: dict[str, JobStatus] = {}
        for job in self.repo.list():
            statuses[job.id] = job.status
        for job_id in self.videos.list_ids():
            statuses.setdefault(job_id, JobStatus.READY)
        return [JobSummary(id=job_id, status=status) for job_id, status in statuses.items()]

    def delete(self, job_id: str) -> bool:
        job = self.repo.get(job_id)
        if job is not None and not job.status.terminal:
            raise ValueError("job is still queued or processing")
        removed = self.videos.delete(job_id)
        return self.repo.remove(job_id) or removed

    async def _run(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._run_job(job_id)
            except Exception:  # pragma: no cover
                self.log.exception("job queue worker error", extra={"job_id": job_id})
            finally:
                self._queue.task_done()

    async def _run_job(self, job_id: str) -> None:
        if self._pending and self._pending[0] == job_id:
            self._pending.popleft()
        if self.repo.get(job_id) is None:
            return
        self._current = job_id
        job = self.repo.set_status(job_id, JobStatus.PROCESSING)
        self.log.debug("processing job", extra={"job_id": job_id, "waiting": len(self._pending)})
        error: Optional[JobError] = None
        try:
            await self._processor(job)
        except Exception as exc:
            error = classify_error(exc)
            self.log.error(
                "video job failed",
                extra={"job_id": job_id, "kind": error.kind.value},
                exc_info=exc,
            )
        finally:
            self.temp_files.release_all(job_id)
            self._current = None
        if error is None:
            self.log.info("video job ready", extra={"job_id": job_id})
            self.repo.set_status(job_id, JobStatus.READY)
            if self.videos.exists(job_id):
                self.repo.remove(job_id)
        else:
            self.repo.set_status(job_id, JobStatus.FAILED, error=error)
        self.repo.prune_finished(self.history_limit)
