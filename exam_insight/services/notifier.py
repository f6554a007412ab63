# exam_insight/services/notifier.py

from typing import Optional

import httpx

from exam_insight.core.logging import LoggerMixin
from exam_insight.schemas.job import JobInfo, JobStatusResponse


class WebhookNotifier(LoggerMixin):
    """Best-effort notifier. Posts the final job snapshot, never raises."""

    def __init__(self, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def notify(self, callback_url: str, job: JobInfo) -> bool:
        payload = JobStatusResponse.from_job(job).model_dump(mode="json", by_alias=True)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(callback_url, json=payload, timeout=self.timeout)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.warning(
                "Callback delivery failed",
                job_id=job.get("job_id"),
                callback_url=callback_url,
                error=str(e),
            )
            return False

        self.logger.info(
            "Callback delivered",
            job_id=job.get("job_id"),
            callback_url=callback_url,
            status_code=response.status_code,
        )
        return True
