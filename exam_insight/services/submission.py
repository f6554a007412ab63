# exam_insight/services/submission.py
"""Validation of an analysis submission before any pipeline work starts."""

import re
from typing import List, Optional, Sequence, Tuple

import httpx

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from exam_insight.core.config import Settings
from exam_insight.core.exceptions import ValidationError
from exam_insight.schemas.analysis import AnalysisContext, FileAsset

_HTML_TAG = re.compile(r"<[^>]*>")
_UNSAFE_CHARS = re.compile(r"[<>\"']")

# browsers and some clients still send the non-standard jpeg type
_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}


class SubmissionForm(BaseModel):
    exam_name: str = Field(min_length=2, max_length=100)
    subject: str = Field(min_length=2, max_length=100)
    subject_code: str = Field(min_length=1, max_length=20, pattern=r"^[A-Za-z0-9]+$")


def sanitize_text(text: str) -> str:
    """Strip HTML tags and quote/angle characters from user-supplied labels."""
    if not text:
        return ""
    return _UNSAFE_CHARS.sub("", _HTML_TAG.sub("", text)).strip()


def normalize_mime_type(mime_type: str) -> str:
    mime = (mime_type or "").split(";")[0].strip().lower()
    return _MIME_ALIASES.get(mime, mime)


def validate_submission(
    files: Sequence[FileAsset],
    exam_name: str,
    subject: str,
    subject_code: str,
    settings: Settings,
) -> Tuple[List[FileAsset], AnalysisContext]:
    """Return normalised assets and context, or raise ValidationError."""
    try:
        form = SubmissionForm(
            exam_name=(exam_name or "").strip(),
            subject=(subject or "").strip(),
            subject_code=(subject_code or "").strip(),
        )
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(
            f"Invalid {field}: {first.get('msg')}", {"errors": e.errors(include_url=False)}
        ) from e

    if not files:
        raise ValidationError("Please upload at least one file")
    if len(files) > settings.MAX_FILES_PER_JOB:
        raise ValidationError(
            f"Maximum {settings.MAX_FILES_PER_JOB} files allowed",
            {"received": len(files)},
        )

    assets = []
    for asset in files:
        mime = normalize_mime_type(asset.mime_type)
        if mime not in settings.ALLOWED_MIME_TYPES:
            raise ValidationError(
                f"Invalid file type: {asset.mime_type}. Allowed: PDF, PNG, JPG, TXT",
                {"filename": asset.name, "mime_type": asset.mime_type},
            )
        if asset.size == 0:
            raise ValidationError(f"File {asset.name} is empty", {"filename": asset.name})
        if asset.size > settings.MAX_FILE_SIZE_BYTES:
            raise ValidationError(
                f"File {asset.name} is too large",
                {"filename": asset.name, "max_bytes": settings.MAX_FILE_SIZE_BYTES},
            )
        assets.append(asset if mime == asset.mime_type else asset.model_copy(update={"mime_type": mime}))

    context = AnalysisContext(
        exam_name=form.exam_name, subject=form.subject, subject_code=form.subject_code
    )
    return assets, context


def validate_callback_url(callback_url: Optional[str]) -> Optional[str]:
    """Blank means no callback. Anything else must be an absolute http(s) URL."""
    if not callback_url or not callback_url.strip():
        return None
    url = callback_url.strip()
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ValidationError("Invalid callbackUrl", {"callback_url": url}) from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError(
            "callbackUrl must be an absolute http(s) URL", {"callback_url": url}
        )
    return url
