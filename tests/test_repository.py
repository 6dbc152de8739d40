import pytest

from short_creator.models.domain import ErrorKind, Job, JobError, JobStatus, RenderConfig, SceneSpec
from short_creator.storage.repository import JobRepository


def make_job(job_id):
    return Job(id=job_id, scenes=[SceneSpec(text="hi")], config=RenderConfig())


def test_records_are_copies():
    repo = JobRepository()
    job = repo.add(make_job("a"))
    job.status = JobStatus.READY

    stored = repo.get("a")
    stored.status = JobStatus.FAILED

    assert repo.get("a").status == JobStatus.QUEUED


def test_duplicate_ids_are_rejected():
    repo = JobRepository()
    repo.add(make_job("a"))

    with pytest.raises(ValueError):
        repo.add(make_job("a"))


def test_terminal_status_is_final():
    repo = JobRepository()
    repo.add(make_job("a"))
    repo.set_status("a", JobStatus.PROCESSING)
    error = JobError(kind=ErrorKind.PROVIDER_TIMEOUT, message="timed out")

    failed = repo.set_status("a", JobStatus.FAILED, error=error)

    assert failed.error == error
    with pytest.raises(ValueError):
        repo.set_status("a", JobStatus.READY)


def test_list_is_in_submission_order_and_remove_reports_presence():
    repo = JobRepository()
    for job_id in ("a", "b", "c"):
        repo.add(make_job(job_id))

    assert [job.id for job in repo.list()] == ["a", "b", "c"]
    assert repo.remove("b") is True
    assert repo.remove("b") is False
    assert repo.get("b") is None


def test_prune_finished_keeps_the_newest_and_never_touches_active_jobs():
    repo = JobRepository()
    for job_id in ("a", "b", "c", "d"):
        repo.add(make_job(job_id))
    for job_id in ("a", "b", "c"):
        repo.set_status(job_id, JobStatus.PROCESSING)
        repo.set_status(job_id, JobStatus.READY)

    assert repo.prune_finished(1) == 2
    assert [job.id for job in repo.list()] == ["c", "d"]
    assert repo.prune_finished(1) == 0
