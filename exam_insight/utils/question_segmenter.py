# exam_insight/utils/question_segmenter.py
"""Split cleaned paper text into individual question strings."""

import re
from typing import List

MIN_QUESTION_CHARS = 10
MIN_QUESTION_WORDS = 2

# "1.", "2)", "(3)", "Q4.", "Q.5", "Question 6:", "Q 7"
_NUMBERED_MARKER = re.compile(
    r"^[ \t]*(?:(?:Q(?:uestion)?|Ques)\.?[ \t]*)?\(?\d{1,3}[ \t]*[.):][ \t]*(?=\S)(?!\d)"
    r"|^[ \t]*(?:Q(?:uestion)?|Ques)\.?[ \t]*\d{1,3}[ \t]+(?=\S)",
    flags=re.IGNORECASE | re.MULTILINE,
)
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")
_WHITESPACE = re.compile(r"\s+")


def _normalise(candidate: str) -> str:
    return _WHITESPACE.sub(" ", candidate).strip()


def _is_question(candidate: str) -> bool:
    return (
        len(candidate) >= MIN_QUESTION_CHARS
        and len(candidate.split(" ")) >= MIN_QUESTION_WORDS
    )


def _split_numbered(text: str) -> List[str]:
    markers = list(_NUMBERED_MARKER.finditer(text))
    pieces = []
    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        pieces.append(text[marker.end():end])
    return pieces


def _split_paragraphs(text: str) -> List[str]:
    pieces = []
    for paragraph in _PARAGRAPH_BREAK.split(text):
        lines = [ln.strip() for ln in paragraph.split("\n") if ln.strip()]
        asks = [ln for ln in lines if ln.endswith("?")]
        if len(asks) < 2:
            pieces.append(paragraph)
            continue
        # several one-line questions in one block: cut after every "?"
        current: List[str] = []
        for line in lines:
            current.append(line)
            if line.endswith("?"):
                pieces.append(" ".join(current))
                current = []
        if current:
            pieces.append(" ".join(current))
    return pieces


def segment_questions(text: str) -> List[str]:
    """
    Return the questions found in `text`, in document order.

    Numbered markers at line starts take priority; text ahead of the first
    marker is treated as a paper header and dropped. Without markers the
    text is split on blank lines.
    """
    if not text or not text.strip():
        return []

    if _NUMBERED_MARKER.search(text):
        pieces = _split_numbered(text)
    else:
        pieces = _split_paragraphs(text)

    questions = []
    for piece in pieces:
        candidate = _normalise(piece)
        if _is_question(candidate):
            questions.append(candidate)
    return questions
