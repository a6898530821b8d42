"""
MonitoringScheduler tests.

Guards:
1. Jobs are replaced, not duplicated, when registered twice under one id
2. remove/pause/resume report unknown ids instead of raising
3. start/stop are idempotent
"""
import pytest

from flipbook_monitoring.scheduler import MonitoringScheduler


def _noop():
    pass


@pytest.fixture
def scheduler():
    instance = MonitoringScheduler()
    yield instance
    instance.stop()


def test_add_and_list_jobs(scheduler):
    scheduler.start()
    scheduler.add_interval_job(_noop, job_id="sampler", name="Sampler", seconds=30)
    scheduler.add_interval_job(_noop, job_id="sampler", name="Sampler v2", seconds=60)

    jobs = scheduler.get_scheduled_jobs()

    assert [job["id"] for job in jobs] == ["sampler"]
    assert jobs[0]["name"] == "Sampler v2"


def test_remove_unknown_job(scheduler):
    assert scheduler.remove_job("missing") is False


def test_remove_job(scheduler):
    scheduler.start()
    scheduler.add_interval_job(_noop, job_id="cleanup", name="Cleanup", hours=24)

    assert scheduler.remove_job("cleanup") is True
    assert scheduler.get_scheduled_jobs() == []


def test_start_stop_idempotent(scheduler):
    scheduler.start()
    scheduler.start()
    assert scheduler.running is True

    scheduler.add_interval_job(_noop, job_id="cleanup", name="Cleanup", hours=24)
    assert scheduler.get_scheduled_jobs()[0]["next_run"] is not None

    scheduler.stop()
    scheduler.stop()
    assert scheduler.running is False


def test_pause_and_resume(scheduler):
    scheduler.start()
    scheduler.add_interval_job(_noop, job_id="cleanup", name="Cleanup", hours=24)

    assert scheduler.pause_job("cleanup") is True
    assert scheduler.get_scheduled_jobs()[0]["next_run"] is None
    assert scheduler.resume_job("cleanup") is True
    assert scheduler.pause_job("missing") is False
