from .extraction_service import ExtractionCascade
from .job_orchestrator import JobOrchestrator
from .notifier import WebhookNotifier
from .ocr_engine import OcrEngineProvider, TesseractOcrEngine
from .prediction_service import PredictionEngine

__all__ = [
    "ExtractionCascade",
    "JobOrchestrator",
    "WebhookNotifier",
    "OcrEngineProvider",
    "TesseractOcrEngine",
    "PredictionEngine",
]
