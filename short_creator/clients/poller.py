from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from short_creator.errors import PERMANENT_STATUSES, PipelineError, mentions_content_policy
from short_creator.models.domain import ErrorKind, ExternalTask, TaskState

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class TaskStatus:
    """One poll observation of a provider task."""

    state: TaskState
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    code: Optional[int] = None


StatusCheck = Callable[[str], Awaitable[TaskStatus]]


class TaskPoller:
    """Bounded wait for an accepted provider task.

    The loop has three exits: the task succeeds (its result url is returned),
    the task fails (a classified :class:`PipelineError` is raised) or the
    attempt bound runs out (``provider_timeout``). Transport hiccups while
    polling are logged and the wait continues, except for 401/403/429 which
    are permanent.
    """

    def __init__(
        self,
        interval: float = 5.0,
        max_attempts: int = 40,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    async def wait(self, task: ExternalTask, check: StatusCheck) -> str:
        task.state = TaskState.GENERATING
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.interval)
            task.attempts = attempt
            try:
                status = await check(task.task_id)
            except PipelineError as exc:
                if exc.kind != ErrorKind.PROVIDER_REQUEST_FAILED or exc.status_code in PERMANENT_STATUSES:
                    task.state = TaskState.FAILED
                    raise
                self.log.warning(
                    "provider poll error (will retry)",
                    extra={"task_id": task.task_id, "attempt": attempt, "status": exc.status_code},
                )
                continue
            except httpx.RequestError as exc:
                self.log.warning(
                    "provider poll transport error (will retry)",
                    extra={"task_id": task.task_id, "attempt": attempt, "error": str(exc)},
                )
                continue

            if status.state == TaskState.SUCCEEDED:
                if not status.result_url:
                    task.state = TaskState.FAILED
                    raise PipelineError.provider_request_failed(
                        "Provider task succeeded but returned no result url",
                        provider_code=status.code,
                        prompt=task.prompt,
                        task_id=task.task_id,
                    )
                task.state = TaskState.SUCCEEDED
                task.result_url = status.result_url
                self.log.info(
                    "provider task completed",
                    extra={"task_id": task.task_id, "attempts": attempt, "url": status.result_url},
                )
                return status.result_url
            if status.state == TaskState.FAILED:
                task.state = TaskState.FAILED
                raise self._task_failure(task, status)
            self.log.debug("waiting for provider task", extra={"task_id": task.task_id, "attempt": attempt})

        task.state = TaskState.TIMED_OUT
        raise PipelineError.provider_timeout(task.task_id, task.attempts, prompt=task.prompt)

    def _task_failure(self, task: ExternalTask, status: TaskStatus) -> PipelineError:
        message = status.error_message or "Unknown error"
        if mentions_content_policy(message):
            return PipelineError.content_policy(message, task.prompt, task_id=task.task_id)
        return PipelineError.provider_request_failed(
            f"Provider task failed: {message}",
            provider_code=status.code,
            provider_message=message,
            prompt=task.prompt,
            task_id=task.task_id,
        )
