# exam_insight/utils/text_cleanup.py
"""
Deterministic cleanup of extracted text.

Every extraction path (plain text, PDF text layers, OCR) funnels its raw
output through `clean_extracted_text` before questions are segmented.
No I/O and no backend calls, so it can be exercised on plain strings.
"""

import re

MIN_LINE_CHARS = 3

_ZERO_WIDTH = re.compile(r"[\u200B-\u200D\uFEFF]")
# C0/C1 control characters except tab and newline
_CONTROL = re.compile(r"[\x00-\x08\x0B-\x1F\x7F-\x9F]")

# Percent escapes some PDF text layers leave behind for punctuation
_PERCENT_ESCAPES = {
    "20": " ",
    "0A": "\n",
    "2C": ",",
    "3A": ":",
    "3B": ";",
    "28": "(",
    "29": ")",
    "5B": "[",
    "5D": "]",
    "2F": "/",
    "3F": "?",
    "26": "&",
    "3D": "=",
    "25": "%",
}
_PERCENT = re.compile(
    r"%(" + "|".join(_PERCENT_ESCAPES) + r")", flags=re.IGNORECASE
)

_HYPHEN_BREAK = re.compile(r"(\w)-[ \t]*\n[ \t]*(\w)")
_HORIZONTAL_WS = re.compile(r"[ \t\f\v\u00A0]+")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


def _decode_percent(match: re.Match) -> str:
    return _PERCENT_ESCAPES[match.group(1).upper()]


def clean_extracted_text(text: str) -> str:
    """
    Normalise raw extractor output.

    Steps: drop zero-width and control characters, decode percent-escaped
    punctuation, join words split by a hyphen at a line break, collapse
    horizontal whitespace, drop lines shorter than MIN_LINE_CHARS (OCR
    noise) while keeping blank lines as paragraph breaks.
    """
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    # form feeds mark page breaks in extractor output
    text = text.replace("\f", "\n").replace("\v", "\n")
    text = _ZERO_WIDTH.sub("", text)
    text = _CONTROL.sub("", text)
    # single pass, so "%2520" decodes to "%20" and stops there
    text = _PERCENT.sub(_decode_percent, text)
    text = _HYPHEN_BREAK.sub(r"\1\2", text)

    lines = []
    for line in text.split("\n"):
        line = _HORIZONTAL_WS.sub(" ", line).strip()
        if not line:
            lines.append("")
        elif len(line) >= MIN_LINE_CHARS:
            lines.append(line)

    cleaned = "\n".join(lines)
    cleaned = _EXTRA_BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()
