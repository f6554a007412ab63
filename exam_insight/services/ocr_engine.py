# exam_insight/services/ocr_engine.py
"""
OCR recognition engine and its process-wide lifecycle.

The engine is expensive to start, so `OcrEngineProvider` builds it lazily
once per process. Concurrent first callers wait on the same initialisation
instead of racing to start their own engine.
"""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import pytesseract
from PIL import Image

from exam_insight.core.config import Settings
from exam_insight.core.exceptions import OcrEngineError
from exam_insight.core.logging import LoggerMixin


@dataclass(frozen=True)
class OcrResult:
    text: str
    confidence: int  # 0..100


class OcrEngine(Protocol):
    """Interface for image -> text recognition backends."""

    async def init(self) -> None:
        ...

    async def recognize(self, image: bytes) -> OcrResult:
        ...

    async def shutdown(self) -> None:
        ...


class TesseractOcrEngine(LoggerMixin):
    """Tesseract via pytesseract. Blocking calls run in worker threads."""

    def __init__(self, language: str = "eng", tesseract_cmd: Optional[str] = None):
        self.language = language
        self.tesseract_cmd = tesseract_cmd
        self.version: Optional[str] = None

    async def init(self) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        try:
            version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise OcrEngineError(
                "Tesseract binary is not available", {"error": str(e)}
            ) from e
        self.version = str(version)
        self.logger.info("Tesseract OCR engine ready", version=self.version)

    async def recognize(self, image: bytes) -> OcrResult:
        if self.version is None:
            raise OcrEngineError("OCR engine used before init()")
        return await asyncio.to_thread(self._recognize_sync, image)

    def _recognize_sync(self, image: bytes) -> OcrResult:
        with Image.open(io.BytesIO(image)) as img:
            img.load()
            data = pytesseract.image_to_data(
                img, lang=self.language, output_type=pytesseract.Output.DICT
            )

        lines = []
        confidences = []
        current_key = None
        current_par = None
        words = []
        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            par = key[:2]
            if key != current_key:
                if words:
                    lines.append(" ".join(words))
                if current_par is not None and par != current_par:
                    lines.append("")
                words = []
                current_key = key
                current_par = par
            words.append(word)
            conf = float(data["conf"][i])
            if conf >= 0:
                confidences.append(conf)
        if words:
            lines.append(" ".join(words))

        confidence = round(sum(confidences) / len(confidences)) if confidences else 0
        return OcrResult(text="\n".join(lines), confidence=int(confidence))

    async def shutdown(self) -> None:
        # tesseract runs as a subprocess per call; nothing is held open
        self.version = None
        self.logger.info("Tesseract OCR engine released")


class OcrEngineProvider(LoggerMixin):
    """Single-flight lazy holder for the shared OCR engine."""

    def __init__(self, factory: Callable[[], OcrEngine]):
        self._factory = factory
        self._engine: Optional[OcrEngine] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "OcrEngineProvider":
        return cls(
            lambda: TesseractOcrEngine(
                language=settings.OCR_LANGUAGE, tesseract_cmd=settings.TESSERACT_CMD
            )
        )

    @property
    def ready(self) -> bool:
        return self._engine is not None

    async def get(self) -> OcrEngine:
        if self._engine is not None:
            return self._engine
        async with self._lock:
            # another caller may have finished init while we waited
            if self._engine is None:
                self.logger.info("Initializing OCR engine")
                engine = self._factory()
                await engine.init()
                self._engine = engine
        return self._engine

    async def shutdown(self) -> None:
        async with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            await engine.shutdown()
