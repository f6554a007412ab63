# exam_insight/core/exceptions.py
"""
Custom exceptions for the exam analysis service.
Provides structured error handling with clear error types and messages.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class ExamInsightError(Exception):
    """Base exception for all analysis operations."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ExamInsightError):
    """Raised when a job submission is malformed."""

    pass


class ConfigurationError(ExamInsightError):
    """Raised when application configuration is invalid."""

    pass


class ExtractionFailure(ExamInsightError):
    """Raised when a single file cannot be extracted. Never fatal for a job."""

    pass


class OcrEngineError(ExamInsightError):
    """Raised when the OCR engine cannot be initialised or used."""

    pass


class AdapterFailure(ExamInsightError):
    """Raised when the external inference service fails or answers garbage."""

    pass


class JobNotFoundError(ExamInsightError):
    """Raised when status is requested for an unknown or expired job."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", {"job_id": job_id})
        self.job_id = job_id


# HTTP Exception factories for FastAPI
def create_http_exception(
    status_code: int, message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a structured HTTP exception."""
    detail = {"message": message}
    if details:
        detail["details"] = details
    return HTTPException(status_code=status_code, detail=detail)


def validation_http_error(
    message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a 400 validation error."""
    return create_http_exception(400, message, details)


def not_found_http_error(resource: str, identifier: str) -> HTTPException:
    """Create a 404 not found error."""
    return create_http_exception(
        404, f"{resource} not found", {"resource": resource, "identifier": identifier}
    )


def internal_server_http_error(
    message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a 500 internal server error."""
    return create_http_exception(500, f"Internal server error: {message}", details)
