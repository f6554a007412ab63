# exam_insight/utils/fingerprint.py
"""Cache keys derived from file contents and the exam context."""

import hashlib
from typing import Iterable

CACHE_KEY_PREFIX = "analysis"


def file_digest(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def context_digest(subject: str, exam_name: str) -> str:
    return hashlib.sha256(f"{subject}-{exam_name}".encode("utf-8")).hexdigest()


def build_cache_key(contents: Iterable[bytes], subject: str, exam_name: str) -> str:
    """
    Order-independent key for a set of files plus subject/exam.

    Per-file digests are sorted before being combined, so the same files
    submitted in any order map to the same key.
    """
    digests = sorted(file_digest(c) for c in contents)
    files_part = hashlib.sha256("-".join(digests).encode("ascii")).hexdigest()
    return (
        f"{CACHE_KEY_PREFIX}:{files_part[:32]}:{context_digest(subject, exam_name)[:8]}"
    )
