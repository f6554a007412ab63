# exam_insight/core/dependencies.py
"""
Centralized dependency injection for FastAPI.
Every collaborator is process-wide: the cache and job tracker must be
shared between the request that submits a job and the ones that poll it.
Tests swap them through app.dependency_overrides.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from exam_insight.core.cache import CacheStore
from exam_insight.core.config import Settings, get_settings
from exam_insight.core.jobs import ProgressTracker
from exam_insight.core.logging import get_logger
from exam_insight.services.extraction_service import ExtractionCascade
from exam_insight.services.inference_client import build_inference_adapter
from exam_insight.services.job_orchestrator import JobOrchestrator
from exam_insight.services.notifier import WebhookNotifier
from exam_insight.services.ocr_engine import OcrEngineProvider
from exam_insight.services.prediction_service import (
    AdapterPredictionSource,
    PredictionEngine,
)

logger = get_logger(__name__)


@lru_cache()
def get_cache_store() -> CacheStore:
    settings = get_settings()
    logger.info("Creating result cache", ttl_seconds=settings.CACHE_TTL_SECONDS)
    return CacheStore(
        default_ttl=settings.CACHE_TTL_SECONDS,
        sweep_threshold=settings.CACHE_SWEEP_THRESHOLD,
    )


@lru_cache()
def get_progress_tracker() -> ProgressTracker:
    return ProgressTracker(retention_seconds=get_settings().JOB_RETENTION_SECONDS)


@lru_cache()
def get_ocr_provider() -> OcrEngineProvider:
    return OcrEngineProvider.from_settings(get_settings())


@lru_cache()
def get_prediction_engine() -> PredictionEngine:
    settings = get_settings()
    adapter = build_inference_adapter(settings)
    logger.info("Creating prediction engine", inference_enabled=adapter is not None)
    source = (
        AdapterPredictionSource(adapter, max_questions=settings.PROMPT_MAX_QUESTIONS)
        if adapter is not None
        else None
    )
    return PredictionEngine(
        adapter_source=source, max_predictions=settings.MAX_PREDICTIONS
    )


@lru_cache()
def get_notifier() -> WebhookNotifier:
    return WebhookNotifier()


def get_extraction_cascade(
    settings: Annotated[Settings, Depends(get_settings)],
    ocr_provider: Annotated[OcrEngineProvider, Depends(get_ocr_provider)],
) -> ExtractionCascade:
    """Cheap to build; the expensive OCR engine lives in the shared provider."""
    return ExtractionCascade(settings=settings, ocr_provider=ocr_provider)


def get_job_orchestrator(
    settings: Annotated[Settings, Depends(get_settings)],
    cache: Annotated[CacheStore, Depends(get_cache_store)],
    tracker: Annotated[ProgressTracker, Depends(get_progress_tracker)],
    cascade: Annotated[ExtractionCascade, Depends(get_extraction_cascade)],
    predictor: Annotated[PredictionEngine, Depends(get_prediction_engine)],
) -> JobOrchestrator:
    logger.debug("Creating job orchestrator")
    return JobOrchestrator(
        settings=settings,
        cache=cache,
        tracker=tracker,
        cascade=cascade,
        predictor=predictor,
    )
