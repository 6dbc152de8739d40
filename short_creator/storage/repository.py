from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional

from short_creator.models.domain import Job, JobError, JobStatus


class JobRepository:
    """In-memory job records, handed out as copies so callers never share state."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = Lock()

    def add(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job {job.id} already exists")
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def set_status(self, job_id: str, status: JobStatus, error: Optional[JobError] = None) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise ValueError(f"job {job_id} not found")
            if job.status.terminal:
                raise ValueError(f"job {job_id} already finished as {job.status.value}")
            job.status = status
            job.updated_at = datetime.utcnow()
            if error is not None:
                job.error = error
            return job.model_copy(deep=True)

    def list(self) -> List[Job]:
        """All jobs, oldest submission first."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda job: job.created_at)
            return [job.model_copy(deep=True) for job in jobs]

    def prune_finished(self, keep: int) -> int:
        """Drop the oldest finished records so at most ``keep`` of them remain."""
        with self._lock:
            finished = sorted(
                (job for job in self._jobs.values() if job.status.terminal),
                key=lambda job: job.updated_at,
            )
            stale = finished[: max(0, len(finished) - keep)]
            for job in stale:
                del self._jobs[job.id]
        return len(stale)

    def remove(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None
