# exam_insight/main.py

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    Request,
    UploadFile,
)
from fastapi.responses import JSONResponse, StreamingResponse

from exam_insight.core.cache import CacheStore
from exam_insight.core.config import Settings, get_settings
from exam_insight.core.dependencies import (
    get_cache_store,
    get_job_orchestrator,
    get_notifier,
    get_ocr_provider,
    get_progress_tracker,
)
from exam_insight.core.exceptions import (
    ConfigurationError,
    JobNotFoundError,
    ValidationError,
    internal_server_http_error,
    not_found_http_error,
    validation_http_error,
)
from exam_insight.core.jobs import ProgressTracker
from exam_insight.core.logging import get_logger, setup_logging
from exam_insight.schemas.analysis import AnalysisContext, FileAsset
from exam_insight.schemas.job import TERMINAL_STATUSES, JobInfo, JobStatusResponse
from exam_insight.services.job_orchestrator import JobOrchestrator
from exam_insight.services.notifier import WebhookNotifier
from exam_insight.services.ocr_engine import OcrEngineProvider
from exam_insight.services.submission import validate_callback_url, validate_submission

logger = get_logger(__name__)

SSE_KEEPALIVE_SECONDS = 15.0


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan - startup and shutdown"""
    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, enable_json=settings.LOG_JSON)
    logger.info("Starting Exam Insight API")

    try:
        settings.validate_runtime_dependencies()
        logger.info(
            "Configuration validated successfully",
            inference_enabled=settings.inference_enabled,
            model=settings.LLM_MODEL if settings.inference_enabled else None,
        )

        yield

    except ConfigurationError as e:
        logger.error("Configuration error during startup", error=str(e))
        raise
    finally:
        logger.info("Shutting down Exam Insight API")
        await get_ocr_provider().shutdown()


app = FastAPI(title="Exam Insight API", lifespan=lifespan)


async def run_analysis_job(
    orchestrator: JobOrchestrator,
    tracker: ProgressTracker,
    notifier: WebhookNotifier,
    job_id: str,
    files: List[FileAsset],
    context: AnalysisContext,
    callback_url: Optional[str] = None,
) -> None:
    """Background entry point. The job record carries the outcome."""
    try:
        await orchestrator.run(job_id, files, context)
    except Exception as e:
        # already recorded as a failed job by the orchestrator
        logger.error("Background analysis aborted", job_id=job_id, error=str(e))
    finally:
        if callback_url:
            snapshot = tracker.get_status(job_id)
            if snapshot is not None:
                await notifier.notify(callback_url, snapshot)


@app.post("/analyze", summary="Submit Exam Papers", status_code=202)
async def submit_analysis(
    background: BackgroundTasks,
    orchestrator: Annotated[JobOrchestrator, Depends(get_job_orchestrator)],
    tracker: Annotated[ProgressTracker, Depends(get_progress_tracker)],
    notifier: Annotated[WebhookNotifier, Depends(get_notifier)],
    cfg: Annotated[Settings, Depends(get_settings)],
    files: Annotated[Optional[List[UploadFile]], File()] = None,
    exam_name: Annotated[str, Form(alias="examName")] = "",
    subject: Annotated[str, Form()] = "",
    subject_code: Annotated[str, Form(alias="subjectCode")] = "",
    callback_url: Annotated[Optional[str], Form(alias="callbackUrl")] = None,
) -> JSONResponse:
    try:
        uploads = []
        for upload in files or []:
            uploads.append(
                FileAsset(
                    name=upload.filename or "upload",
                    mime_type=upload.content_type or "",
                    content=await upload.read(),
                )
            )

        assets, context = validate_submission(
            uploads, exam_name, subject, subject_code, cfg
        )
        callback = validate_callback_url(callback_url)

        job_id = uuid.uuid4().hex
        tracker.create(job_id, len(assets) + 2)
        background.add_task(
            run_analysis_job,
            orchestrator,
            tracker,
            notifier,
            job_id,
            assets,
            context,
            callback,
        )
        logger.info(
            "Analysis job accepted",
            job_id=job_id,
            files=len(assets),
            subject_code=context.subject_code,
            callback=bool(callback),
        )
        return JSONResponse(
            status_code=202, content={"jobId": job_id, "status": "accepted"}
        )

    except ValidationError as e:
        logger.warning("Rejected analysis submission", error=e.message)
        raise validation_http_error(e.message, e.details)
    except Exception as e:
        logger.error("Failed to accept analysis submission", error=str(e))
        raise internal_server_http_error("Failed to accept analysis submission")


@app.get("/analyze/{job_id}/status", summary="Get Job Status")
async def get_job_status(
    job_id: str,
    tracker: Annotated[ProgressTracker, Depends(get_progress_tracker)],
) -> JobStatusResponse:
    try:
        return JobStatusResponse.from_job(tracker.require(job_id))
    except JobNotFoundError:
        logger.warning("Job not found", job_id=job_id)
        raise not_found_http_error("Job", job_id)


def _sse_event(job: JobInfo) -> str:
    payload = JobStatusResponse.from_job(job).model_dump(mode="json", by_alias=True)
    return f"event: status\ndata: {json.dumps(payload)}\n\n"


@app.get("/analyze/{job_id}/events", summary="Stream Job Status")
async def stream_job_status(
    job_id: str,
    request: Request,
    tracker: Annotated[ProgressTracker, Depends(get_progress_tracker)],
) -> StreamingResponse:
    try:
        tracker.require(job_id)
    except JobNotFoundError:
        raise not_found_http_error("Job", job_id)

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[JobInfo]" = asyncio.Queue()

    def listener(snapshot: JobInfo) -> None:
        if snapshot.get("job_id") == job_id:
            loop.call_soon_threadsafe(queue.put_nowait, snapshot)

    async def events():
        # subscribe before reading the current state so no update falls between
        tracker.add_listener(listener)
        try:
            current = tracker.get_status(job_id)
            if current is None:
                return
            yield _sse_event(current)
            if current["status"] in TERMINAL_STATUSES:
                return
            while not await request.is_disconnected():
                try:
                    snapshot = await asyncio.wait_for(
                        queue.get(), timeout=SSE_KEEPALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield _sse_event(snapshot)
                if snapshot["status"] in TERMINAL_STATUSES:
                    return
        finally:
            tracker.remove_listener(listener)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/cache/stats", summary="Get Cache Statistics")
async def get_cache_stats(
    cache: Annotated[CacheStore, Depends(get_cache_store)],
):
    return cache.stats()


@app.delete("/cache", summary="Clear Result Cache")
async def clear_cache(
    cache: Annotated[CacheStore, Depends(get_cache_store)],
):
    cache.clear()
    logger.info("Result cache cleared")
    return {"status": "success", "message": "Cache cleared"}


@app.get("/health", summary="Health Check")
async def health(
    cfg: Annotated[Settings, Depends(get_settings)],
    tracker: Annotated[ProgressTracker, Depends(get_progress_tracker)],
    cache: Annotated[CacheStore, Depends(get_cache_store)],
    ocr_provider: Annotated[OcrEngineProvider, Depends(get_ocr_provider)],
):
    return {
        "status": "ok",
        "service": cfg.APP_NAME,
        "ocrReady": ocr_provider.ready,
        "inferenceEnabled": cfg.inference_enabled,
        "trackedJobs": len(tracker),
        "cachedResults": len(cache),
    }
