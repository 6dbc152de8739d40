import asyncio

import httpx
import pytest

from conftest import SleepRecorder
from short_creator.clients.poller import TaskPoller, TaskStatus
from short_creator.errors import PipelineError
from short_creator.models.domain import ErrorKind, ExternalTask, TaskState


def scripted_check(outcomes):
    calls = []

    async def check(task_id):
        calls.append(task_id)
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return check, calls


def test_wait_returns_result_url_once_task_succeeds():
    sleep = SleepRecorder()
    poller = TaskPoller(interval=5.0, max_attempts=10, sleep=sleep)
    task = ExternalTask(task_id="T", prompt="a cat")
    check, calls = scripted_check(
        [
            TaskStatus(state=TaskState.GENERATING, code=0),
            TaskStatus(state=TaskState.SUCCEEDED, result_url="https://cdn.test/T.mp4", code=1),
        ]
    )

    url = asyncio.run(poller.wait(task, check))

    assert url == "https://cdn.test/T.mp4"
    assert task.state == TaskState.SUCCEEDED
    assert task.result_url == url
    assert task.attempts == 2
    assert calls == ["T", "T"]
    assert sleep.delays == [5.0, 5.0]


def test_failed_task_is_terminal():
    poller = TaskPoller(max_attempts=10, sleep=SleepRecorder())
    task = ExternalTask(task_id="T", prompt="a cat")
    check, calls = scripted_check(
        [TaskStatus(state=TaskState.FAILED, error_message="render crashed", code=2)]
    )

    with pytest.raises(PipelineError) as info:
        asyncio.run(poller.wait(task, check))

    assert info.value.kind == ErrorKind.PROVIDER_REQUEST_FAILED
    assert info.value.provider_code == 2
    assert not info.value.retryable
    assert task.state == TaskState.FAILED
    assert len(calls) == 1


def test_failed_task_mentioning_safety_is_content_policy():
    poller = TaskPoller(max_attempts=10, sleep=SleepRecorder())
    task = ExternalTask(task_id="T", prompt="a cat")
    check, _ = scripted_check(
        [TaskStatus(state=TaskState.FAILED, error_message="Blocked by Safety filter", code=3)]
    )

    with pytest.raises(PipelineError) as info:
        asyncio.run(poller.wait(task, check))

    assert info.value.kind == ErrorKind.CONTENT_POLICY_VIOLATION
    assert info.value.provider_message == "Blocked by Safety filter"
    assert info.value.prompt == "a cat"


def test_attempt_bound_yields_timeout():
    sleep = SleepRecorder()
    poller = TaskPoller(interval=1.0, max_attempts=3, sleep=sleep)
    task = ExternalTask(task_id="T", prompt="a cat")
    check, calls = scripted_check([TaskStatus(state=TaskState.GENERATING, code=0) for _ in range(3)])

    with pytest.raises(PipelineError) as info:
        asyncio.run(poller.wait(task, check))

    assert info.value.kind == ErrorKind.PROVIDER_TIMEOUT
    assert info.value.attempts == 3
    assert info.value.task_id == "T"
    assert task.state == TaskState.TIMED_OUT
    assert len(calls) == 3
    assert sleep.delays == [1.0, 1.0, 1.0]


def test_transient_poll_errors_keep_waiting():
    poller = TaskPoller(max_attempts=5, sleep=SleepRecorder())
    task = ExternalTask(task_id="T", prompt="a cat")
    check, calls = scripted_check(
        [
            PipelineError.provider_request_failed("status check failed", status_code=502),
            httpx.ConnectError("connection reset"),
            TaskStatus(state=TaskState.SUCCEEDED, result_url="https://cdn.test/T.mp4", code=1),
        ]
    )

    assert asyncio.run(poller.wait(task, check)) == "https://cdn.test/T.mp4"
    assert len(calls) == 3


def test_permanent_poll_error_stops_waiting():
    poller = TaskPoller(max_attempts=5, sleep=SleepRecorder())
    task = ExternalTask(task_id="T", prompt="a cat")
    check, calls = scripted_check([PipelineError.provider_request_failed("unauthorized", status_code=401)])

    with pytest.raises(PipelineError) as info:
        asyncio.run(poller.wait(task, check))

    assert info.value.status_code == 401
    assert len(calls) == 1


def test_success_without_url_is_an_error():
    poller = TaskPoller(max_attempts=5, sleep=SleepRecorder())
    task = ExternalTask(task_id="T", prompt="a cat")
    check, _ = scripted_check([TaskStatus(state=TaskState.SUCCEEDED, code=1)])

    with pytest.raises(PipelineError) as info:
        asyncio.run(poller.wait(task, check))

    assert info.value.kind == ErrorKind.PROVIDER_REQUEST_FAILED


def test_attempt_bound_must_be_positive():
    with pytest.raises(ValueError):
        TaskPoller(max_attempts=0)
