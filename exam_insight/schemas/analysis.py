# exam_insight/schemas/analysis.py

from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Difficulty = Literal["Easy", "Medium", "Hard"]
QuestionType = Literal["Short Answer", "Long Answer", "Numerical", "Derivation"]
Section = Literal["A", "B", "C"]
ExtractionMethod = Literal["text", "pdf-text-layer", "ocr", "none"]

DIFFICULTIES = ("Easy", "Medium", "Hard")
QUESTION_TYPES = ("Short Answer", "Long Answer", "Numerical", "Derivation")
SECTIONS = ("A", "B", "C")


class CamelModel(BaseModel):
    """Base for payloads exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileAsset(BaseModel):
    """One submitted document. Immutable for the duration of a job run."""

    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class AnalysisContext(CamelModel):
    exam_name: str
    subject: str
    subject_code: str


@dataclass(frozen=True)
class QuestionRecord:
    text: str
    source_file: str


class PredictionRecord(CamelModel):
    id: int
    topic: str
    question: str
    difficulty: Difficulty
    probability: float = Field(ge=0.0, le=1.0)
    type: QuestionType
    rationale: str
    section: Section


class DifficultyPoint(CamelModel):
    year: str
    easy: int = 0
    medium: int = 0
    hard: int = 0


class Trends(CamelModel):
    difficulty_progression: List[DifficultyPoint] = Field(default_factory=list)


class PredictionOutcome(CamelModel):
    predictions: List[PredictionRecord]
    summary: List[str]
    trends: Trends
    source: Literal["adapter", "heuristic"]


class FileResult(CamelModel):
    filename: str
    status: Literal["success", "error"]
    questions_found: int = 0
    method: ExtractionMethod
    pages: int = 0
    text_length: int = 0
    confidence: Optional[int] = None
    error: Optional[str] = None
    suggestion: Optional[str] = None


class AnalysisSummary(CamelModel):
    papers_analyzed: int
    pages_processed: int
    questions_extracted: int
    topics_covered: int
    ocr_used: bool
    processing_time_ms: int = 0
    file_results: List[FileResult]


class ExamInfo(CamelModel):
    name: str
    subject: str
    subject_code: str


class RecurrenceItem(CamelModel):
    topic: str
    frequency: int
    last_asked: int


class AnalysisResult(CamelModel):
    predictions: List[PredictionRecord]
    summary: List[str]
    trends: Trends
    analysis: AnalysisSummary
    exam: Optional[ExamInfo] = None
    recurrence: List[RecurrenceItem] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def to_payload(self) -> dict:
        """JSON-safe camelCase dict, the shape stored in cache and job results."""
        return self.model_dump(mode="json", by_alias=True)
