# exam_insight/core/jobs.py
"""
In-process job tracker.

Each job walks created -> running -> completed|failed. Progress only moves
forward and a terminal job ignores every later write. Readers get copies
taken under the lock, so a poller never sees a half-applied update.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from exam_insight.core.exceptions import JobNotFoundError
from exam_insight.core.logging import LoggerMixin
from exam_insight.schemas.job import JobInfo, TERMINAL_STATUSES

JobListener = Callable[[JobInfo], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressTracker(LoggerMixin):
    def __init__(
        self,
        retention_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        # job_id -> JobInfo
        self._store: Dict[str, JobInfo] = {}
        self._lock = threading.Lock()
        self._listeners: List[JobListener] = []
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock

    # ---- listeners ----

    def add_listener(self, listener: JobListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: JobListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _publish(self, snapshot: JobInfo) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.warning(
                    "Job listener failed", job_id=snapshot.get("job_id"), error=str(e)
                )

    # ---- state machine ----

    def create(self, job_id: str, total_steps: int) -> bool:
        """Register a job. Returns False if the id is already tracked."""
        with self._lock:
            self._purge_expired_locked()
            if job_id in self._store:
                return False
            self._store[job_id] = {
                "job_id": job_id,
                "created_at": self._clock(),
                "started_at": None,
                "finished_at": None,
                "status": "created",
                "message": "Job created",
                "total_steps": max(1, int(total_steps)),
                "current_step": 0,
                "progress": 0,
                "result": None,
                "error": None,
            }
            snapshot = dict(self._store[job_id])
        self.logger.debug("Job created", job_id=job_id, total_steps=total_steps)
        self._publish(snapshot)
        return True

    def update(self, job_id: str, percent: float, message: str) -> bool:
        """Move progress forward. Ignored for unknown or finished jobs."""
        with self._lock:
            job = self._store.get(job_id)
            if job is None or job["status"] in TERMINAL_STATUSES:
                return False
            if job["status"] == "created":
                job["status"] = "running"
                job["started_at"] = self._clock()
            progress = max(job["progress"], min(100, int(round(percent))))
            job["progress"] = progress
            job["current_step"] = max(
                job["current_step"], (progress * job["total_steps"]) // 100
            )
            job["message"] = message
            snapshot = dict(job)
        self._publish(snapshot)
        return True

    def complete(self, job_id: str, result: Dict[str, Any]) -> bool:
        with self._lock:
            job = self._store.get(job_id)
            if job is None or job["status"] in TERMINAL_STATUSES:
                return False
            job.update(
                {
                    "status": "completed",
                    "progress": 100,
                    "current_step": job["total_steps"],
                    "message": "Analysis complete",
                    "result": result,
                    "finished_at": self._clock(),
                }
            )
            job["started_at"] = job["started_at"] or job["finished_at"]
            snapshot = dict(job)
        self.logger.info("Job completed", job_id=job_id)
        self._publish(snapshot)
        return True

    def fail(self, job_id: str, message: str) -> bool:
        with self._lock:
            job = self._store.get(job_id)
            if job is None or job["status"] in TERMINAL_STATUSES:
                return False
            job.update(
                {
                    "status": "failed",
                    "message": "Analysis failed",
                    "error": message,
                    "finished_at": self._clock(),
                }
            )
            snapshot = dict(job)
        self.logger.warning("Job failed", job_id=job_id, error=message)
        self._publish(snapshot)
        return True

    def get_status(self, job_id: str) -> Optional[JobInfo]:
        with self._lock:
            job = self._store.get(job_id)
            if job is not None and self._is_expired(job, self._clock()):
                del self._store[job_id]
                job = None
            return dict(job) if job is not None else None

    def require(self, job_id: str) -> JobInfo:
        """Like get_status, but an unknown or expired id raises JobNotFoundError."""
        job = self.get_status(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # ---- retention ----

    def _is_expired(self, job: JobInfo, now: datetime) -> bool:
        finished = job.get("finished_at")
        return (
            job["status"] in TERMINAL_STATUSES
            and finished is not None
            and now - finished > self._retention
        )

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [k for k, job in self._store.items() if self._is_expired(job, now)]
        for job_id in expired:
            del self._store[job_id]
        if expired:
            self.logger.debug("Purged finished jobs", count=len(expired))


class JobProgress:
    """
    Progress channel bound to one job. Extraction code reports through it
    without knowing how the tracker stores state. `scoped` maps a nested
    0..100 range onto a slice of the parent's range.
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        job_id: str,
        start: float = 0.0,
        end: float = 100.0,
    ) -> None:
        self.tracker = tracker
        self.job_id = job_id
        self.start = start
        self.end = end

    def report(self, percent: float, message: str) -> None:
        span = self.end - self.start
        bounded = max(0.0, min(100.0, percent))
        self.tracker.update(self.job_id, self.start + span * bounded / 100.0, message)

    def scoped(self, start: float, end: float) -> "JobProgress":
        span = self.end - self.start
        return JobProgress(
            self.tracker,
            self.job_id,
            self.start + span * start / 100.0,
            self.start + span * end / 100.0,
        )
