# exam_insight/services/job_orchestrator.py
"""
End-to-end run of one analysis job:
cache lookup -> per-file extraction -> question segmentation -> predictions
-> result assembly -> cache write -> job completion.
"""

import time
from datetime import date
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from exam_insight.core.cache import CacheStore
from exam_insight.core.config import Settings
from exam_insight.core.exceptions import ExtractionFailure
from exam_insight.core.jobs import JobProgress, ProgressTracker
from exam_insight.core.logging import LoggerMixin
from exam_insight.schemas.analysis import (
    AnalysisContext,
    AnalysisResult,
    AnalysisSummary,
    ExamInfo,
    FileAsset,
    FileResult,
    PredictionOutcome,
    QuestionRecord,
    RecurrenceItem,
)
from exam_insight.services.extraction_service import ExtractionCascade, ExtractionResult
from exam_insight.services.prediction_service import PredictionEngine
from exam_insight.services.submission import sanitize_text
from exam_insight.utils.fingerprint import build_cache_key
from exam_insight.utils.question_segmenter import segment_questions

SCANNED_WARNING = "Some PDFs appear to be scanned images. OCR was attempted for text extraction."
OCR_WARNING = "OCR was used for some files. Results may vary based on image quality."
NO_QUESTIONS_WARNING = (
    "No questions could be extracted. Predictions are generic for this subject."
)

# progress milestones (percent)
PROGRESS_START = 5
PROGRESS_FILES_FROM = 10
PROGRESS_FILES_SPAN = 70
PROGRESS_PREDICT = 85
PROGRESS_FINALIZE = 95


class JobOrchestrator(LoggerMixin):
    def __init__(
        self,
        settings: Settings,
        cache: CacheStore,
        tracker: ProgressTracker,
        cascade: ExtractionCascade,
        predictor: PredictionEngine,
    ):
        self.settings = settings
        self.cache = cache
        self.tracker = tracker
        self.cascade = cascade
        self.predictor = predictor

    async def run(
        self, job_id: str, files: Sequence[FileAsset], context: AnalysisContext
    ) -> AnalysisResult:
        """
        Run the job to completion or failure.

        Per-file extraction problems are recorded and skipped. Any other
        exception marks the job failed, leaves the cache untouched and is
        re-raised to the caller.
        """
        started = time.perf_counter()
        self.tracker.create(job_id, len(files) + 2)
        self.tracker.update(job_id, PROGRESS_START, "Starting analysis...")
        self.logger.info(
            "Starting analysis",
            job_id=job_id,
            subject=context.subject,
            subject_code=context.subject_code,
            files=len(files),
        )

        try:
            cache_key = build_cache_key(
                (f.content for f in files), context.subject, context.exam_name
            )
            cached = self._load_cached(cache_key)
            if cached is not None:
                cached = cached.model_copy(update={"exam": self._exam_info(context)})
                self.tracker.complete(job_id, cached.to_payload())
                self.logger.info("Served analysis from cache", job_id=job_id)
                return cached

            result = await self._analyze(job_id, files, context)
            result.analysis.processing_time_ms = int((time.perf_counter() - started) * 1000)

            self.cache.set(cache_key, result.to_payload(), self.settings.CACHE_TTL_SECONDS)
            self.tracker.complete(job_id, result.to_payload())
            self.logger.info(
                "Analysis complete",
                job_id=job_id,
                questions=result.analysis.questions_extracted,
                predictions=len(result.predictions),
                elapsed_ms=result.analysis.processing_time_ms,
            )
            return result

        except Exception as e:
            self.logger.error("Analysis failed", job_id=job_id, error=str(e))
            self.tracker.fail(job_id, str(e) or e.__class__.__name__)
            raise

    def _exam_info(self, context: AnalysisContext) -> ExamInfo:
        return ExamInfo(
            name=sanitize_text(context.exam_name),
            subject=sanitize_text(context.subject),
            subject_code=sanitize_text(context.subject_code),
        )

    def _load_cached(self, cache_key: str):
        payload = self.cache.get(cache_key)
        if payload is None:
            return None
        try:
            return AnalysisResult.model_validate(payload)
        except PydanticValidationError as e:
            self.logger.warning(
                "Discarding corrupt cache entry", key=cache_key[:20], error=str(e)
            )
            self.cache.delete(cache_key)
            return None

    async def _analyze(
        self, job_id: str, files: Sequence[FileAsset], context: AnalysisContext
    ) -> AnalysisResult:
        progress = JobProgress(self.tracker, job_id)
        questions: List[QuestionRecord] = []
        file_results: List[FileResult] = []
        total_pages = 0
        scanned_pdf = False
        ocr_used = False
        count = len(files)

        for i, asset in enumerate(files):
            band_start = PROGRESS_FILES_FROM + PROGRESS_FILES_SPAN * i / count
            band_end = PROGRESS_FILES_FROM + round(PROGRESS_FILES_SPAN * (i + 1) / count)
            progress.report(band_start, f"Processing file {i + 1}/{count}: {asset.name}")

            file_result, extraction, found = await self._process_file(
                job_id, asset, progress.scoped(band_start, band_end)
            )
            file_results.append(file_result)
            questions.extend(found)
            if extraction is not None:
                if asset.mime_type == "application/pdf" and "ocr" in extraction.strategies_tried:
                    scanned_pdf = True
                if extraction.method == "ocr":
                    ocr_used = True
                if file_result.status == "success":
                    total_pages += extraction.page_count

            progress.report(band_end, f"Processed file {i + 1}/{count}: {asset.name}")

        progress.report(PROGRESS_PREDICT, "Running AI analysis...")
        outcome = await self.predictor.predict(
            [q.text for q in questions], context.subject, context.exam_name
        )

        progress.report(PROGRESS_FINALIZE, "Finalizing results...")
        return self._assemble(
            context,
            files,
            outcome,
            questions,
            file_results,
            total_pages,
            scanned_pdf,
            ocr_used,
        )

    async def _process_file(
        self, job_id: str, asset: FileAsset, progress: JobProgress
    ) -> Tuple[FileResult, Optional[ExtractionResult], List[QuestionRecord]]:
        """Extract and segment one file. Failures are reported, never raised."""
        try:
            extraction = await self.cascade.extract(asset, progress)
        except ExtractionFailure as e:
            self.logger.warning(
                "File extraction failed",
                job_id=job_id,
                filename=asset.name,
                error=e.message,
            )
            failed = FileResult(
                filename=asset.name, status="error", method="none", error=e.message
            )
            return failed, None, []

        text = extraction.text.strip()
        if not extraction.succeeded or len(text) < self.settings.MIN_FILE_TEXT_CHARS:
            self.logger.warning(
                "Insufficient text extracted",
                job_id=job_id,
                filename=asset.name,
                method=extraction.method,
                characters=len(text),
            )
            failed = FileResult(
                filename=asset.name,
                status="error",
                method=extraction.method,
                pages=extraction.page_count,
                text_length=len(extraction.text),
                confidence=extraction.confidence,
                error=extraction.error or "Could not extract sufficient text",
                suggestion=extraction.suggestion,
            )
            return failed, extraction, []

        found = [
            QuestionRecord(text=q, source_file=asset.name)
            for q in segment_questions(extraction.text)
        ]
        self.logger.info(
            "File processed",
            job_id=job_id,
            filename=asset.name,
            questions=len(found),
            pages=extraction.page_count,
            method=extraction.method,
        )
        succeeded = FileResult(
            filename=asset.name,
            status="success",
            questions_found=len(found),
            method=extraction.method,
            pages=extraction.page_count,
            text_length=len(extraction.text),
            confidence=extraction.confidence,
        )
        return succeeded, extraction, found

    def _assemble(
        self,
        context: AnalysisContext,
        files: Sequence[FileAsset],
        outcome: PredictionOutcome,
        questions: List[QuestionRecord],
        file_results: List[FileResult],
        total_pages: int,
        scanned_pdf: bool,
        ocr_used: bool,
    ) -> AnalysisResult:
        warnings = []
        if scanned_pdf:
            warnings.append(SCANNED_WARNING)
        if ocr_used:
            warnings.append(OCR_WARNING)
        failed = [r.filename for r in file_results if r.status == "error"]
        if failed:
            warnings.append(
                f"{len(failed)} of {len(files)} file(s) could not be processed: "
                + ", ".join(failed)
            )
        if not questions:
            warnings.append(NO_QUESTIONS_WARNING)
        last_year = date.today().year - 1

        return AnalysisResult(
            predictions=outcome.predictions,
            summary=outcome.summary,
            trends=outcome.trends,
            exam=self._exam_info(context),
            analysis=AnalysisSummary(
                papers_analyzed=len(files),
                pages_processed=total_pages,
                questions_extracted=len(questions),
                topics_covered=len({p.topic for p in outcome.predictions}),
                ocr_used=ocr_used,
                file_results=file_results,
            ),
            recurrence=[
                RecurrenceItem(
                    topic=p.topic, frequency=max(1, 10 - i * 2), last_asked=last_year - i
                )
                for i, p in enumerate(outcome.predictions[:5])
            ],
            warnings=warnings,
        )
