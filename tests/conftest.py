"""Shared fixtures: settings, fake OCR engine, fake PDF strategies, wired orchestrator."""

import asyncio
from typing import List, Optional

import pytest

from exam_insight.core.cache import CacheStore
from exam_insight.core.config import Settings
from exam_insight.core.jobs import ProgressTracker
from exam_insight.services.extraction_service import ExtractionCascade, RawExtraction
from exam_insight.services.job_orchestrator import JobOrchestrator
from exam_insight.services.ocr_engine import OcrEngineProvider, OcrResult
from exam_insight.services.prediction_service import PredictionEngine


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(_env_file=None, OPENAI_API_KEY=None, OCR_ENHANCE_IMAGES=False)


class FakeOcrEngine:
    def __init__(self, text: str = "", confidence: int = 80, error: Optional[Exception] = None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.init_calls = 0
        self.shutdown_calls = 0
        self.images: List[bytes] = []

    async def init(self) -> None:
        self.init_calls += 1
        await asyncio.sleep(0.01)

    async def recognize(self, image: bytes) -> OcrResult:
        self.images.append(image)
        if self.error is not None:
            raise self.error
        return OcrResult(text=self.text, confidence=self.confidence)

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


class FakePdfStrategy:
    def __init__(
        self,
        name: str,
        text: str = "",
        method: str = "pdf-text-layer",
        page_count: int = 1,
        confidence: int = 95,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.method = method
        self.text = text
        self.page_count = page_count
        self.confidence = confidence
        self.error = error
        self.calls = 0

    async def extract(self, content: bytes, progress=None) -> RawExtraction:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return RawExtraction(
            text=self.text, page_count=self.page_count, confidence=self.confidence
        )


@pytest.fixture
def fake_ocr_engine():
    return FakeOcrEngine(text="Explain the working of a binary search tree.", confidence=87)


@pytest.fixture
def ocr_provider(fake_ocr_engine):
    return OcrEngineProvider(lambda: fake_ocr_engine)


@pytest.fixture
def make_strategy():
    return FakePdfStrategy


@pytest.fixture
def make_ocr_engine():
    return FakeOcrEngine


@pytest.fixture
def scanned_strategies():
    """A chain where every strategy comes back (almost) empty."""
    return [
        FakePdfStrategy("pymupdf", text=" "),
        FakePdfStrategy("pdfplumber", text="12"),
        FakePdfStrategy("ocr", text="", method="ocr", page_count=2),
    ]


@pytest.fixture
def cache():
    return CacheStore(default_ttl=60)


@pytest.fixture
def tracker():
    return ProgressTracker()


@pytest.fixture
def cascade(settings, ocr_provider, scanned_strategies):
    return ExtractionCascade(settings, ocr_provider, pdf_strategies=scanned_strategies)


@pytest.fixture
def orchestrator(settings, cache, tracker, cascade):
    return JobOrchestrator(
        settings=settings,
        cache=cache,
        tracker=tracker,
        cascade=cascade,
        predictor=PredictionEngine(max_predictions=settings.MAX_PREDICTIONS),
    )
