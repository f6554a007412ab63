# exam_insight/services/extraction_service.py
"""
Per-file text extraction.

Dispatch is by declared mime type:
1. text/plain  -> decode bytes
2. application/pdf -> PyMuPDF text layer, then pdfplumber text layer, then
   page rasterisation + OCR; the first strategy that yields enough text wins
3. image/*     -> optional Pillow enhancement, then OCR

Backend failures never escape `extract`: a file that cannot be read comes
back with method "none" plus an error and a suggestion for the user.
"""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

import fitz
import pdfplumber
from PIL import Image, ImageFilter, ImageOps
from tenacity import AsyncRetrying, stop_after_attempt

from exam_insight.core.config import Settings
from exam_insight.core.exceptions import ExtractionFailure
from exam_insight.core.jobs import JobProgress
from exam_insight.core.logging import LoggerMixin
from exam_insight.schemas.analysis import ExtractionMethod, FileAsset
from exam_insight.services.ocr_engine import OcrEngineProvider
from exam_insight.utils.text_cleanup import clean_extracted_text

SCANNED_PDF_ERROR = "PDF appears to be scanned (image-only). Text extraction not possible."
SCANNED_PDF_SUGGESTION = (
    "This file appears to be a scanned, image-only document. Convert its pages "
    "to PNG or JPEG images and submit them as images for OCR processing."
)
MAX_IMAGE_SIZE = (2000, 3000)


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    page_count: int
    method: ExtractionMethod
    confidence: int
    error: Optional[str] = None
    suggestion: Optional[str] = None
    strategies_tried: Tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.method != "none"


@dataclass(frozen=True)
class RawExtraction:
    text: str
    page_count: int
    confidence: int


class PdfStrategy(Protocol):
    name: str
    method: ExtractionMethod

    async def extract(
        self, content: bytes, progress: Optional[JobProgress] = None
    ) -> RawExtraction:
        ...


class PyMuPdfTextLayer:
    """Native text layer read with PyMuPDF."""

    name = "pymupdf"
    method: ExtractionMethod = "pdf-text-layer"
    confidence = 95

    async def extract(
        self, content: bytes, progress: Optional[JobProgress] = None
    ) -> RawExtraction:
        return await asyncio.to_thread(self._extract_sync, content)

    def _extract_sync(self, content: bytes) -> RawExtraction:
        with fitz.open(stream=content, filetype="pdf") as doc:
            pages = [doc.load_page(i).get_text("text") or "" for i in range(len(doc))]
        return RawExtraction(
            text="\n\n".join(pages), page_count=len(pages), confidence=self.confidence
        )


class PdfPlumberTextLayer:
    """Second opinion on the text layer; pdfminer copes with some encodings PyMuPDF drops."""

    name = "pdfplumber"
    method: ExtractionMethod = "pdf-text-layer"
    confidence = 90

    async def extract(
        self, content: bytes, progress: Optional[JobProgress] = None
    ) -> RawExtraction:
        return await asyncio.to_thread(self._extract_sync, content)

    def _extract_sync(self, content: bytes) -> RawExtraction:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            pages = [(page.extract_text() or "") for page in pdf.pages]
        texts = [t for t in pages if t.strip()]
        return RawExtraction(
            text="\n\n".join(texts), page_count=len(pages), confidence=self.confidence
        )


class PdfOcrStrategy(LoggerMixin):
    """Rasterise pages with PyMuPDF and OCR them one by one."""

    name = "ocr"
    method: ExtractionMethod = "ocr"

    def __init__(
        self,
        ocr_provider: OcrEngineProvider,
        max_pages: int = 20,
        attempts_per_page: int = 2,
        dpi: int = 200,
    ):
        self.ocr_provider = ocr_provider
        self.max_pages = max_pages
        self.attempts_per_page = attempts_per_page
        self.dpi = dpi

    async def extract(
        self, content: bytes, progress: Optional[JobProgress] = None
    ) -> RawExtraction:
        engine = await self.ocr_provider.get()
        doc = await asyncio.to_thread(fitz.open, stream=content, filetype="pdf")
        try:
            total = min(len(doc), self.max_pages)
            if len(doc) > self.max_pages:
                self.logger.info(
                    "PDF exceeds OCR page limit",
                    pages=len(doc),
                    max_pages=self.max_pages,
                )
            texts: List[str] = []
            confidences: List[int] = []
            for index in range(total):
                if progress:
                    progress.report(
                        100.0 * index / max(total, 1),
                        f"Running OCR on page {index + 1}/{total}",
                    )
                png = await asyncio.to_thread(self._render_page, doc, index)
                try:
                    async for attempt in AsyncRetrying(
                        stop=stop_after_attempt(self.attempts_per_page), reraise=True
                    ):
                        with attempt:
                            result = await engine.recognize(png)
                except Exception as e:
                    self.logger.warning(
                        "OCR failed for page",
                        page=index + 1,
                        attempts=self.attempts_per_page,
                        error=str(e),
                    )
                    continue
                if result.text.strip():
                    texts.append(result.text)
                    confidences.append(result.confidence)
        finally:
            doc.close()

        mean = round(sum(confidences) / len(confidences)) if confidences else 0
        return RawExtraction(text="\n\n".join(texts), page_count=total, confidence=mean)

    def _render_page(self, doc: "fitz.Document", index: int) -> bytes:
        pix = doc.load_page(index).get_pixmap(dpi=self.dpi)
        return pix.tobytes("png")


def enhance_image(image: bytes) -> bytes:
    """Grayscale, stretch contrast, sharpen and bound the size before OCR."""
    with Image.open(io.BytesIO(image)) as img:
        img = ImageOps.exif_transpose(img)
        img = ImageOps.grayscale(img)
        img = ImageOps.autocontrast(img)
        img = img.filter(ImageFilter.SHARPEN)
        img.thumbnail(MAX_IMAGE_SIZE)
        out = io.BytesIO()
        img.save(out, format="PNG")
    return out.getvalue()


class ExtractionCascade(LoggerMixin):
    def __init__(
        self,
        settings: Settings,
        ocr_provider: OcrEngineProvider,
        pdf_strategies: Optional[Sequence[PdfStrategy]] = None,
    ):
        self.settings = settings
        self.ocr_provider = ocr_provider
        if pdf_strategies is None:
            pdf_strategies = [
                PyMuPdfTextLayer(),
                PdfPlumberTextLayer(),
                PdfOcrStrategy(
                    ocr_provider,
                    max_pages=settings.OCR_MAX_PAGES,
                    attempts_per_page=settings.OCR_PAGE_ATTEMPTS,
                    dpi=settings.OCR_RENDER_DPI,
                ),
            ]
        self.pdf_strategies = list(pdf_strategies)

    async def extract(
        self, asset: FileAsset, progress: Optional[JobProgress] = None
    ) -> ExtractionResult:
        mime = (asset.mime_type or "").lower()
        self.logger.info("Extracting text", filename=asset.name, mime_type=mime)

        if mime == "text/plain":
            return self._extract_plain_text(asset)
        if mime == "application/pdf":
            return await self._extract_pdf(asset, progress)
        if mime.startswith("image/"):
            return await self._extract_image(asset)

        raise ExtractionFailure(
            f"Unsupported file type: {asset.mime_type}",
            {"filename": asset.name, "mime_type": asset.mime_type},
        )

    def _extract_plain_text(self, asset: FileAsset) -> ExtractionResult:
        try:
            raw = asset.content.decode("utf-8")
        except UnicodeDecodeError:
            raw = asset.content.decode("utf-8", errors="ignore")
        return ExtractionResult(
            text=clean_extracted_text(raw),
            page_count=1,
            method="text",
            confidence=100,
            strategies_tried=("text",),
        )

    def _pdf_strategy_chain(self) -> List[PdfStrategy]:
        if self.settings.PDF_ASSUME_SCANNED:
            return [s for s in self.pdf_strategies if s.method == "ocr"]
        return self.pdf_strategies

    async def _extract_pdf(
        self, asset: FileAsset, progress: Optional[JobProgress]
    ) -> ExtractionResult:
        if not asset.content.startswith(b"%PDF-"):
            return ExtractionResult(
                text="",
                page_count=0,
                method="none",
                confidence=0,
                error="Invalid PDF file",
                suggestion="Check that the file is a PDF document and re-upload it.",
            )

        min_chars = self.settings.PDF_MIN_TEXT_CHARS
        tried: List[str] = []
        page_count = 0
        for strategy in self._pdf_strategy_chain():
            tried.append(strategy.name)
            try:
                raw = await strategy.extract(asset.content, progress)
            except Exception as e:
                self.logger.warning(
                    "PDF extraction strategy failed",
                    filename=asset.name,
                    strategy=strategy.name,
                    error=str(e),
                )
                continue

            page_count = max(page_count, raw.page_count)
            extracted = len(raw.text.strip())
            if extracted >= min_chars:
                self.logger.info(
                    "PDF text extracted",
                    filename=asset.name,
                    strategy=strategy.name,
                    characters=extracted,
                    pages=raw.page_count,
                )
                return ExtractionResult(
                    text=clean_extracted_text(raw.text),
                    page_count=raw.page_count,
                    method=strategy.method,
                    confidence=raw.confidence,
                    strategies_tried=tuple(tried),
                )
            self.logger.info(
                "PDF strategy yielded too little text",
                filename=asset.name,
                strategy=strategy.name,
                characters=extracted,
                required=min_chars,
            )

        self.logger.warning("PDF appears to be scanned (image-only)", filename=asset.name)
        return ExtractionResult(
            text="",
            page_count=page_count,
            method="none",
            confidence=0,
            error=SCANNED_PDF_ERROR,
            suggestion=SCANNED_PDF_SUGGESTION,
            strategies_tried=tuple(tried),
        )

    async def _extract_image(self, asset: FileAsset) -> ExtractionResult:
        image = asset.content
        if self.settings.OCR_ENHANCE_IMAGES:
            try:
                image = await asyncio.to_thread(enhance_image, asset.content)
            except Exception as e:
                self.logger.debug(
                    "Image enhancement skipped", filename=asset.name, error=str(e)
                )
                image = asset.content

        try:
            engine = await self.ocr_provider.get()
            result = await engine.recognize(image)
        except Exception as e:
            self.logger.warning("Image OCR failed", filename=asset.name, error=str(e))
            return ExtractionResult(
                text="",
                page_count=1,
                method="none",
                confidence=0,
                error=f"OCR failed: {e}",
                suggestion="Upload a sharper, higher-resolution image of the page.",
                strategies_tried=("ocr",),
            )

        self.logger.info(
            "Image OCR complete", filename=asset.name, confidence=result.confidence
        )
        return ExtractionResult(
            text=clean_extracted_text(result.text),
            page_count=1,
            method="ocr",
            confidence=result.confidence,
            strategies_tried=("ocr",),
        )
