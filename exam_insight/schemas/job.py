# exam_insight/schemas/job.py

from datetime import datetime
from typing import Any, Dict, Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


JobStatus = Literal["created", "running", "completed", "failed"]

TERMINAL_STATUSES = frozenset({"completed", "failed"})


class JobInfo(TypedDict, total=False):
    """Snapshot of a tracked job. Copies are handed out, never the live record."""

    job_id: str
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    status: JobStatus
    message: str

    total_steps: int
    current_step: int
    progress: int  # 0..100

    result: Optional[Dict[str, Any]]
    error: Optional[str]


class JobStatusResponse(BaseModel):
    """Status payload served to pollers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    status: JobStatus
    progress: int
    message: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: JobInfo) -> "JobStatusResponse":
        return cls(
            job_id=job["job_id"],
            status=job["status"],
            progress=job.get("progress", 0),
            message=job.get("message", ""),
            result=job.get("result"),
            error=job.get("error"),
        )
