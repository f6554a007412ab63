# exam_insight/core/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional, Set

from exam_insight.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    APP_NAME: str = "Exam Insight API"

    # logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # submission limits
    ALLOWED_MIME_TYPES: Set[str] = {
        "application/pdf",
        "image/png",
        "image/jpeg",
        "text/plain",
    }
    MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024
    MAX_FILES_PER_JOB: int = 20

    # result cache / job bookkeeping
    CACHE_TTL_SECONDS: int = 24 * 60 * 60
    CACHE_SWEEP_THRESHOLD: int = 100
    JOB_RETENTION_SECONDS: int = 60 * 60

    # extraction
    PDF_MIN_TEXT_CHARS: int = 100
    PDF_ASSUME_SCANNED: bool = False
    MIN_FILE_TEXT_CHARS: int = 10
    OCR_MAX_PAGES: int = 20
    OCR_PAGE_ATTEMPTS: int = 2
    OCR_RENDER_DPI: int = 200
    OCR_LANGUAGE: str = "eng"
    OCR_ENHANCE_IMAGES: bool = True
    TESSERACT_CMD: Optional[str] = None

    # inference
    OPENAI_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_MAX_TOKENS: int = 3000
    LLM_TEMPERATURE: float = 0.7
    PROMPT_MAX_QUESTIONS: int = 50
    MAX_PREDICTIONS: int = 10

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = (v or "").upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigurationError(f"Unknown LOG_LEVEL: {v}")
        return level

    @field_validator("OCR_MAX_PAGES", "OCR_PAGE_ATTEMPTS", "OCR_RENDER_DPI")
    @classmethod
    def validate_ocr_bounds(cls, v: int) -> int:
        if v < 1:
            raise ConfigurationError("OCR bounds must be positive integers")
        return v

    @field_validator("LLM_TEMPERATURE")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ConfigurationError("LLM_TEMPERATURE must be within [0, 2]")
        return v

    @property
    def inference_enabled(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    def validate_runtime_dependencies(self) -> None:
        """Validate cross-field settings before the service starts accepting jobs."""
        errors = []

        if self.PDF_MIN_TEXT_CHARS < 1:
            errors.append("PDF_MIN_TEXT_CHARS must be positive")

        if self.CACHE_TTL_SECONDS < 1:
            errors.append("CACHE_TTL_SECONDS must be positive")

        if self.MAX_FILES_PER_JOB < 1:
            errors.append("MAX_FILES_PER_JOB must be positive")

        if not 1 <= self.MAX_PREDICTIONS <= 50:
            errors.append("MAX_PREDICTIONS must be within [1, 50]")

        if not self.ALLOWED_MIME_TYPES:
            errors.append("ALLOWED_MIME_TYPES is empty")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {', '.join(errors)}"
            )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached factory. FastAPI resolves it through Depends and lru_cache
    keeps a single Settings instance per process.
    """
    return Settings()
