# exam_insight/services/prediction_service.py
"""
Exam question predictions.

Two sources sit behind one interface: the external inference adapter and a
keyword heuristic. `PredictionEngine` tries the adapter when one is
configured and there is something to analyse, and falls back to the
heuristic on any failure. Whatever the source, every record goes through
the same normalisation before leaving this module.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from exam_insight.core.exceptions import AdapterFailure
from exam_insight.core.logging import LoggerMixin
from exam_insight.schemas.analysis import (
    DIFFICULTIES,
    QUESTION_TYPES,
    SECTIONS,
    DifficultyPoint,
    PredictionOutcome,
    PredictionRecord,
    Trends,
)
from exam_insight.services.inference_client import InferenceAdapter

KEYWORD_VOCABULARY = (
    "algorithm", "data structure", "tree", "graph", "sorting", "searching",
    "array", "linked list", "stack", "queue", "hash", "heap",
    "complexity", "recursion", "dynamic programming", "greedy",
    "database", "sql", "normalization", "transaction",
    "operating system", "process", "thread", "memory", "scheduling",
    "network", "protocol", "tcp", "ip", "routing",
    "compiler", "parsing", "lexical", "syntax",
    "machine learning", "neural network", "classification", "regression",
)
_ACRONYMS = {"sql", "tcp", "ip"}
_KEYWORD_PATTERNS = {
    kw: re.compile(r"\b" + re.escape(kw) + r"(?:s|es)?\b", re.IGNORECASE)
    for kw in KEYWORD_VOCABULARY
}

GENERIC_TOPICS = (
    ("Fundamentals", "Explain the fundamental concepts of {subject}"),
    ("Core Principles", "Describe the core principles and their applications in {subject}"),
    ("Problem Solving", "Solve a typical problem related to {subject}"),
    ("Applications", "Discuss real-world applications of {subject}"),
    ("Advanced Topics", "Analyze advanced concepts in {subject}"),
)
GENERIC_DIFFICULTIES = ("Easy", "Medium", "Medium", "Hard", "Hard")

DEFAULT_DIFFICULTY_PROGRESSION = (
    {"year": "2021", "easy": 5, "medium": 8, "hard": 4},
    {"year": "2022", "easy": 4, "medium": 10, "hard": 5},
    {"year": "2023", "easy": 6, "medium": 7, "hard": 6},
    {"year": "2024", "easy": 5, "medium": 9, "hard": 5},
    {"year": "2025", "easy": 7, "medium": 6, "hard": 6},
)

SUMMARY_SIZE = 5


class PredictionSource(Protocol):
    """Produces raw `{predictions, summary, trends}` data for a question set."""

    name: str

    async def predict(
        self, questions: Sequence[str], subject: str, exam_name: str
    ) -> Dict[str, Any]:
        ...


# ---------------- Heuristic source ----------------


def _topic_label(keyword: str) -> str:
    if keyword in _ACRONYMS:
        return keyword.upper()
    return keyword[:1].upper() + keyword[1:]


def _tier(rank: int, labels: Sequence[str]) -> str:
    if rank < 3:
        return labels[0]
    if rank < 7:
        return labels[1]
    return labels[2]


def count_keywords(questions: Sequence[str]) -> List[tuple]:
    """(keyword, questions mentioning it), most frequent first, vocabulary order on ties."""
    counts: Dict[str, int] = {}
    for question in questions:
        for kw, pattern in _KEYWORD_PATTERNS.items():
            if pattern.search(question):
                counts[kw] = counts.get(kw, 0) + 1
    order = {kw: i for i, kw in enumerate(KEYWORD_VOCABULARY)}
    return sorted(counts.items(), key=lambda item: (-item[1], order[item[0]]))


def generic_predictions(subject: str) -> List[Dict[str, Any]]:
    return [
        {
            "topic": f"{subject} - {topic}",
            "question": template.format(subject=subject),
            "difficulty": GENERIC_DIFFICULTIES[i],
            "probability": round(0.7 - i * 0.1, 2),
            "type": "Long Answer" if i % 2 == 0 else "Short Answer",
            "rationale": "Based on common exam patterns",
            "section": "A" if i < 2 else "B" if i < 4 else "C",
        }
        for i, (topic, template) in enumerate(GENERIC_TOPICS)
    ]


def fallback_predictions(
    questions: Sequence[str], subject: str, limit: int = 10
) -> Dict[str, Any]:
    """Network-free predictions. Same input, same output."""
    ranked = count_keywords(questions)[:limit]
    if not ranked:
        predictions = generic_predictions(subject)
    else:
        predictions = []
        for i, (kw, count) in enumerate(ranked):
            pattern = _KEYWORD_PATTERNS[kw]
            example = next((q for q in questions if pattern.search(q)), None)
            predictions.append(
                {
                    "topic": _topic_label(kw),
                    "question": example or f"Explain the concept of {kw} with examples",
                    "difficulty": _tier(i, DIFFICULTIES),
                    "probability": round(0.9 - i * 0.08, 2),
                    "type": "Long Answer" if i % 2 == 0 else "Short Answer",
                    "rationale": f"This topic appeared {count} times in the analyzed papers",
                    "section": _tier(i, SECTIONS),
                }
            )

    return {
        "predictions": predictions,
        "summary": [p["topic"] for p in predictions[:SUMMARY_SIZE]],
        "trends": {"difficultyProgression": [dict(p) for p in DEFAULT_DIFFICULTY_PROGRESSION]},
    }


class HeuristicPredictionSource:
    name = "heuristic"

    def __init__(self, limit: int = 10):
        self.limit = limit

    async def predict(
        self, questions: Sequence[str], subject: str, exam_name: str
    ) -> Dict[str, Any]:
        return fallback_predictions(questions, subject, self.limit)


# ---------------- Adapter source ----------------


def build_analysis_prompt(
    questions: Sequence[str], subject: str, exam_name: str, max_questions: int = 50
) -> str:
    listed = "\n".join(f"{i}. {q}" for i, q in enumerate(questions[:max_questions], start=1))
    return f"""You are an expert exam paper analyzer specializing in {subject} for {exam_name or 'academic exams'}.

Analyze the following {len(questions)} questions extracted from previous year papers.

Your task:
1. Identify the most frequently tested topics and concepts
2. Detect patterns in question types (numerical, theoretical, application-based, derivation)
3. Assess difficulty distribution trends
4. Predict the 10 most likely questions for the upcoming exam based on those patterns

For each prediction, provide:
- topic: the specific topic or chapter (not a generic label)
- question: a complete, well-formed question
- difficulty: "Easy", "Medium" or "Hard"
- probability: 0.0-1.0 confidence based on recurrence
- type: "Short Answer", "Long Answer", "Numerical" or "Derivation"
- rationale: why this question is likely, citing the observed pattern
- section: "A", "B" or "C" following the usual exam structure

Also provide:
- summary: array of the 5 most important topics
- trends: object with difficultyProgression (array of {{year, easy, medium, hard}})

Return ONLY valid JSON in this exact format:
{{
  "predictions": [...],
  "summary": ["topic1", "topic2", ...],
  "trends": {{"difficultyProgression": [{{"year": "2021", "easy": 5, "medium": 8, "hard": 4}}]}}
}}

Questions to analyze:
{listed}"""


class AdapterPredictionSource(LoggerMixin):
    name = "adapter"

    def __init__(self, adapter: InferenceAdapter, max_questions: int = 50):
        self.adapter = adapter
        self.max_questions = max_questions

    async def predict(
        self, questions: Sequence[str], subject: str, exam_name: str
    ) -> Dict[str, Any]:
        prompt = build_analysis_prompt(questions, subject, exam_name, self.max_questions)
        content = await self.adapter.complete(prompt)
        return parse_adapter_response(content)


def parse_adapter_response(content: str) -> Dict[str, Any]:
    """Decode the adapter's JSON. Anything off-contract raises AdapterFailure."""
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as e:
        raise AdapterFailure(f"Inference response is not JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise AdapterFailure("Inference response is not a JSON object")
    predictions = parsed.get("predictions")
    if not isinstance(predictions, list) or not any(isinstance(p, dict) for p in predictions):
        raise AdapterFailure("Inference response has no predictions array")
    if not isinstance(parsed.get("summary"), list):
        raise AdapterFailure("Inference response summary is missing or not an array")
    if not isinstance(parsed.get("trends"), dict):
        raise AdapterFailure("Inference response trends is missing or not an object")
    return parsed


# ---------------- Normalisation ----------------


def _coerce_probability(value: Any) -> float:
    if isinstance(value, bool):
        return 0.5
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0.5
    if isinstance(value, (int, float)) and math.isfinite(value):
        return min(1.0, max(0.0, float(value)))
    return 0.5


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _choice(value: Any, allowed: Sequence[str], default: str) -> str:
    value = _text(value)
    return value if value in allowed else default


def normalize_prediction(raw: Mapping[str, Any], index: int) -> PredictionRecord:
    topic = _text(raw.get("topic")) or "Unknown Topic"
    return PredictionRecord(
        id=index,
        topic=topic,
        question=_text(raw.get("question")) or f"Explain key concepts of {topic}",
        difficulty=_choice(raw.get("difficulty"), DIFFICULTIES, "Medium"),
        probability=_coerce_probability(raw.get("probability")),
        type=_choice(raw.get("type"), QUESTION_TYPES, "Long Answer"),
        rationale=_text(raw.get("rationale")) or "Based on historical pattern analysis",
        section=_choice(raw.get("section"), SECTIONS, "A"),
    )


def normalize_trends(raw: Any) -> Trends:
    points = []
    items = raw.get("difficultyProgression") if isinstance(raw, dict) else None
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict) or item.get("year") in (None, ""):
            continue
        try:
            points.append(
                DifficultyPoint(
                    year=str(item["year"]),
                    easy=max(0, int(item.get("easy") or 0)),
                    medium=max(0, int(item.get("medium") or 0)),
                    hard=max(0, int(item.get("hard") or 0)),
                )
            )
        except (TypeError, ValueError):
            continue
    if not points:
        points = [DifficultyPoint(**p) for p in DEFAULT_DIFFICULTY_PROGRESSION]
    return Trends(difficulty_progression=points)


def normalize_outcome(raw: Mapping[str, Any], source: str, limit: int) -> PredictionOutcome:
    items = [p for p in raw.get("predictions") or [] if isinstance(p, dict)][:limit]
    predictions = [normalize_prediction(p, i) for i, p in enumerate(items, start=1)]

    summary = [s.strip() for s in raw.get("summary") or [] if isinstance(s, str) and s.strip()]
    if not summary:
        summary = [p.topic for p in predictions[:SUMMARY_SIZE]]

    return PredictionOutcome(
        predictions=predictions,
        summary=summary[:SUMMARY_SIZE],
        trends=normalize_trends(raw.get("trends")),
        source=source,
    )


# ---------------- Engine ----------------


class PredictionEngine(LoggerMixin):
    def __init__(
        self,
        adapter_source: Optional[PredictionSource] = None,
        heuristic_source: Optional[PredictionSource] = None,
        max_predictions: int = 10,
    ):
        self.adapter_source = adapter_source
        self.heuristic_source = heuristic_source or HeuristicPredictionSource(max_predictions)
        self.max_predictions = max_predictions

    async def predict(
        self, questions: Sequence[str], subject: str, exam_name: str
    ) -> PredictionOutcome:
        if self.adapter_source is not None and questions:
            try:
                raw = await self.adapter_source.predict(questions, subject, exam_name)
                outcome = normalize_outcome(raw, "adapter", self.max_predictions)
                self.logger.info(
                    "Predictions from inference service",
                    predictions=len(outcome.predictions),
                )
                return outcome
            except Exception as e:
                self.logger.warning(
                    "Inference failed, using heuristic predictions", error=str(e)
                )
        else:
            self.logger.info(
                "Using heuristic predictions",
                adapter_configured=self.adapter_source is not None,
                questions=len(questions),
            )

        raw = await self.heuristic_source.predict(questions, subject, exam_name)
        return normalize_outcome(raw, "heuristic", self.max_predictions)
