from datetime import datetime, timedelta, timezone

import pytest

from exam_insight.core.exceptions import JobNotFoundError
from exam_insight.core.jobs import JobProgress, ProgressTracker


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def test_create_is_idempotent_per_id(tracker):
    assert tracker.create("job-1", 3) is True
    assert tracker.create("job-1", 3) is False
    assert tracker.get_status("job-1")["status"] == "created"


def test_first_update_starts_the_job(tracker):
    tracker.create("job-1", 4)
    assert tracker.update("job-1", 25, "Working")

    job = tracker.get_status("job-1")
    assert job["status"] == "running"
    assert job["started_at"] is not None
    assert job["progress"] == 25
    assert job["current_step"] == 1
    assert job["message"] == "Working"


def test_progress_never_moves_backwards(tracker):
    tracker.create("job-1", 2)
    tracker.update("job-1", 60, "ahead")
    tracker.update("job-1", 30, "behind")

    job = tracker.get_status("job-1")
    assert job["progress"] == 60
    assert job["message"] == "behind"


def test_progress_is_capped_at_100(tracker):
    tracker.create("job-1", 2)
    tracker.update("job-1", 250, "overshoot")
    assert tracker.get_status("job-1")["progress"] == 100


def test_completed_job_ignores_later_writes(tracker):
    tracker.create("job-1", 2)
    tracker.update("job-1", 50, "half")
    assert tracker.complete("job-1", {"answer": 42})

    assert tracker.update("job-1", 10, "late") is False
    assert tracker.fail("job-1", "late failure") is False
    assert tracker.complete("job-1", {"answer": 0}) is False

    job = tracker.get_status("job-1")
    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["current_step"] == job["total_steps"]
    assert job["result"] == {"answer": 42}
    assert job["error"] is None


def test_failed_job_keeps_error_and_ignores_later_writes(tracker):
    tracker.create("job-1", 2)
    tracker.update("job-1", 40, "going")
    assert tracker.fail("job-1", "boom")
    assert tracker.complete("job-1", {}) is False

    job = tracker.get_status("job-1")
    assert job["status"] == "failed"
    assert job["error"] == "boom"
    assert job["message"] == "Analysis failed"
    assert job["progress"] == 40


def test_unknown_job(tracker):
    assert tracker.update("nope", 10, "x") is False
    assert tracker.complete("nope", {}) is False
    assert tracker.get_status("nope") is None


def test_status_is_a_copy(tracker):
    tracker.create("job-1", 2)
    snapshot = tracker.get_status("job-1")
    snapshot["status"] = "completed"
    assert tracker.get_status("job-1")["status"] == "created"


def test_finished_jobs_expire_after_retention():
    clock = FakeClock()
    tracker = ProgressTracker(retention_seconds=60, clock=clock)
    tracker.create("done", 1)
    tracker.complete("done", {})
    tracker.create("running", 1)
    tracker.update("running", 10, "x")

    clock.now += timedelta(seconds=61)

    assert tracker.get_status("done") is None
    assert tracker.get_status("running")["status"] == "running"


def test_listeners_receive_snapshots_and_failures_are_contained(tracker):
    seen = []

    def broken(_snapshot):
        raise RuntimeError("listener bug")

    tracker.add_listener(broken)
    tracker.add_listener(lambda s: seen.append((s["status"], s["progress"])))

    tracker.create("job-1", 2)
    tracker.update("job-1", 50, "half")
    tracker.complete("job-1", {})

    assert seen == [("created", 0), ("running", 50), ("completed", 100)]


def test_removed_listener_stops_receiving(tracker):
    seen = []
    listener = seen.append
    tracker.add_listener(listener)
    tracker.create("job-1", 1)
    tracker.remove_listener(listener)
    tracker.update("job-1", 10, "x")
    assert len(seen) == 1


def test_job_progress_maps_into_its_band(tracker):
    tracker.create("job-1", 2)
    channel = JobProgress(tracker, "job-1").scoped(10, 50)

    channel.report(50, "halfway through the band")
    assert tracker.get_status("job-1")["progress"] == 30

    channel.scoped(50, 100).report(100, "end of nested band")
    assert tracker.get_status("job-1")["progress"] == 50


def test_require_raises_for_unknown_job(tracker):
    tracker.create("job-1", 1)
    assert tracker.require("job-1")["job_id"] == "job-1"
    with pytest.raises(JobNotFoundError):
        tracker.require("missing")
