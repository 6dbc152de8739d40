from __future__ import annotations

from typing import Any, Optional

import httpx

from short_creator.models.domain import ErrorKind, JobError

CONTENT_POLICY_MARKERS = ("content policy", "safety", "violat")
PERMANENT_STATUSES = frozenset({401, 403, 429})
RETRYABLE_CLIENT_STATUSES = frozenset({400, 408})


def mentions_content_policy(text: str | None) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in CONTENT_POLICY_MARKERS)


class PipelineError(Exception):
    """Failure raised anywhere in a job's pipeline.

    The ``kind`` tag decides which payload fields are meaningful and whether
    the failure may be retried (see :func:`is_retryable`).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        provider_code: int | None = None,
        provider_message: str | None = None,
        prompt: str | None = None,
        task_id: str | None = None,
        attempts: int | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.provider_code = provider_code
        self.provider_message = provider_message
        self.prompt = prompt
        self.task_id = task_id
        self.attempts = attempts
        self.stage = stage

    @classmethod
    def content_policy(
        cls,
        provider_message: str,
        prompt: str | None,
        status_code: int | None = None,
        task_id: str | None = None,
    ) -> "PipelineError":
        return cls(
            ErrorKind.CONTENT_POLICY_VIOLATION,
            "Provider rejected the request under its content policy",
            status_code=status_code,
            provider_message=provider_message,
            prompt=prompt,
            task_id=task_id,
        )

    @classmethod
    def provider_request_failed(
        cls,
        message: str,
        *,
        status_code: int | None = None,
        provider_code: int | None = None,
        provider_message: str | None = None,
        prompt: str | None = None,
        task_id: str | None = None,
    ) -> "PipelineError":
        return cls(
            ErrorKind.PROVIDER_REQUEST_FAILED,
            message,
            status_code=status_code,
            provider_code=provider_code,
            provider_message=provider_message,
            prompt=prompt,
            task_id=task_id,
        )

    @classmethod
    def provider_timeout(cls, task_id: str, attempts: int, prompt: str | None = None) -> "PipelineError":
        return cls(
            ErrorKind.PROVIDER_TIMEOUT,
            f"Provider task {task_id} timed out after {attempts} attempts",
            task_id=task_id,
            attempts=attempts,
            prompt=prompt,
        )

    @classmethod
    def stage_failed(cls, stage: str, message: str) -> "PipelineError":
        return cls(ErrorKind.PIPELINE_STAGE_FAILED, f"{stage} failed: {message}", stage=stage)

    @property
    def retryable(self) -> bool:
        return is_retryable(self)

    def to_job_error(self) -> JobError:
        return JobError(
            kind=self.kind,
            message=self.message,
            status_code=self.status_code,
            provider_code=self.provider_code,
            provider_message=self.provider_message,
            prompt=self.prompt,
        )

    def context(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status_code": self.status_code,
            "provider_code": self.provider_code,
            "task_id": self.task_id,
            "attempts": self.attempts,
            "stage": self.stage,
        }


def is_retryable(error: PipelineError) -> bool:
    if error.kind == ErrorKind.PROVIDER_REQUEST_FAILED:
        status = error.status_code
        if status is None or status in PERMANENT_STATUSES:
            return False
        return status >= 500 or status in RETRYABLE_CLIENT_STATUSES
    if error.kind in (
        ErrorKind.CONTENT_POLICY_VIOLATION,
        ErrorKind.PROVIDER_TIMEOUT,
        ErrorKind.PIPELINE_STAGE_FAILED,
    ):
        return False
    raise ValueError(f"unknown error kind: {error.kind!r}")


def classify_error(exc: BaseException) -> JobError:
    """Normalise anything that escaped a job into the structured error stored on it."""
    if isinstance(exc, PipelineError):
        return exc.to_job_error()
    status: Optional[int] = None
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        status = exc.response.status_code
    message = str(exc) or exc.__class__.__name__
    return JobError(kind=ErrorKind.PIPELINE_STAGE_FAILED, message=message, status_code=status)
