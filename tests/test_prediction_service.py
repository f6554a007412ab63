import json
import math

import pytest

from exam_insight.core.exceptions import AdapterFailure
from exam_insight.services.prediction_service import (
    DEFAULT_DIFFICULTY_PROGRESSION,
    AdapterPredictionSource,
    PredictionEngine,
    build_analysis_prompt,
    count_keywords,
    fallback_predictions,
    normalize_outcome,
    normalize_prediction,
    normalize_trends,
    parse_adapter_response,
)

SORTING_QUESTION = "Explain the algorithm for sorting an array."


class FakeAdapter:
    def __init__(self, content: str = "", error: Exception = None):
        self.content = content
        self.error = error
        self.prompts = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.content


def adapter_payload(count: int) -> str:
    return json.dumps(
        {
            "predictions": [
                {
                    "topic": f"Topic {i}",
                    "question": f"Question {i}?",
                    "difficulty": "Hard",
                    "probability": 0.5,
                    "type": "Numerical",
                    "rationale": "Seen often",
                    "section": "C",
                }
                for i in range(count)
            ],
            "summary": ["Topic 0", "Topic 1"],
            "trends": {"difficultyProgression": [{"year": 2024, "easy": 1, "medium": 2, "hard": 3}]},
        }
    )


def test_sorting_question_ranks_algorithm_first():
    result = fallback_predictions([SORTING_QUESTION], "Computer Science")

    predictions = result["predictions"]
    assert 1 <= len(predictions) <= 10
    assert [p["topic"] for p in predictions] == ["Algorithm", "Sorting", "Array"]
    assert [p["probability"] for p in predictions] == [0.9, 0.82, 0.74]
    assert predictions[0]["question"] == SORTING_QUESTION
    assert predictions[0]["rationale"] == "This topic appeared 1 times in the analyzed papers"
    assert result["summary"] == ["Algorithm", "Sorting", "Array"]


def test_fallback_is_deterministic():
    questions = [SORTING_QUESTION, "Describe a hash table.", "Explain TCP and IP routing."]
    assert fallback_predictions(questions, "CS") == fallback_predictions(questions, "CS")


def test_keywords_counted_once_per_question_and_ranked():
    ranked = count_keywords(
        ["Explain recursion.", "Trace recursion on trees.", "Explain SQL joins."]
    )
    assert ranked[0] == ("recursion", 2)
    assert ("tree", 1) in ranked
    assert ("sql", 1) in ranked


def test_acronyms_are_upper_cased():
    result = fallback_predictions(["Write an SQL query with joins."], "DBMS")
    assert result["predictions"][0]["topic"] == "SQL"


def test_tiers_follow_rank():
    questions = [" ".join(k for k in ("tree", "graph", "stack", "queue", "heap", "hash", "array", "recursion"))]
    predictions = fallback_predictions(questions, "CS")["predictions"]
    assert [p["difficulty"] for p in predictions] == ["Easy"] * 3 + ["Medium"] * 4 + ["Hard"]
    assert [p["section"] for p in predictions] == ["A"] * 3 + ["B"] * 4 + ["C"]


def test_no_keywords_gives_generic_subject_predictions():
    predictions = fallback_predictions([], "Physics")["predictions"]
    assert len(predictions) == 5
    assert predictions[0]["topic"] == "Physics - Fundamentals"
    assert all(p["topic"].startswith("Physics - ") for p in predictions)


@pytest.mark.parametrize(
    "raw, expected",
    [(-0.2, 0.0), (1.5, 1.0), ("0.4", 0.4), ("high", 0.5), (True, 0.5), (math.nan, 0.5), (None, 0.5)],
)
def test_probability_is_coerced_into_unit_interval(raw, expected):
    assert normalize_prediction({"probability": raw}, 1).probability == expected


def test_normalize_prediction_fills_defaults():
    record = normalize_prediction({"difficulty": "Impossible", "type": "Essay", "section": "Z"}, 3)
    assert record.id == 3
    assert record.topic == "Unknown Topic"
    assert record.difficulty == "Medium"
    assert record.type == "Long Answer"
    assert record.section == "A"
    assert record.question


def test_empty_trends_use_default_progression():
    trends = normalize_trends({})
    assert len(trends.difficulty_progression) == len(DEFAULT_DIFFICULTY_PROGRESSION)
    assert normalize_trends(None).difficulty_progression[0].year == "2021"


def test_outcome_is_capped_at_limit():
    outcome = normalize_outcome(json.loads(adapter_payload(15)), "adapter", 10)
    assert len(outcome.predictions) == 10
    assert [p.id for p in outcome.predictions] == list(range(1, 11))


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[]",
        json.dumps({"predictions": []}),
        json.dumps({"predictions": [{}], "trends": []}),
        json.dumps({"predictions": [{"topic": "Stacks"}]}),
        json.dumps({"predictions": [{"topic": "Stacks"}], "summary": []}),
        json.dumps({"predictions": [{"topic": "Stacks"}], "trends": {}}),
    ],
)
def test_off_contract_adapter_responses_are_rejected(content):
    with pytest.raises(AdapterFailure):
        parse_adapter_response(content)


def test_prompt_lists_at_most_max_questions():
    prompt = build_analysis_prompt([f"Question {i}" for i in range(60)], "CS", "Finals", max_questions=50)
    assert "50. Question 49" in prompt
    assert "51. Question 50" not in prompt
    assert "Analyze the following 60 questions" in prompt


@pytest.mark.anyio
async def test_engine_uses_adapter_when_it_answers():
    adapter = FakeAdapter(adapter_payload(12))
    engine = PredictionEngine(adapter_source=AdapterPredictionSource(adapter))

    outcome = await engine.predict([SORTING_QUESTION], "CS", "Finals")

    assert outcome.source == "adapter"
    assert len(outcome.predictions) == 10
    assert outcome.trends.difficulty_progression[0].year == "2024"
    assert len(adapter.prompts) == 1


@pytest.mark.anyio
async def test_engine_falls_back_on_malformed_adapter_output():
    engine = PredictionEngine(adapter_source=AdapterPredictionSource(FakeAdapter("{oops")))

    outcome = await engine.predict([SORTING_QUESTION], "CS", "Finals")

    assert outcome.source == "heuristic"
    assert outcome.predictions[0].topic == "Algorithm"


@pytest.mark.anyio
async def test_engine_falls_back_on_adapter_error():
    adapter = FakeAdapter(error=AdapterFailure("timeout"))
    engine = PredictionEngine(adapter_source=AdapterPredictionSource(adapter))

    outcome = await engine.predict([SORTING_QUESTION], "CS", "Finals")

    assert outcome.source == "heuristic"


@pytest.mark.anyio
async def test_engine_skips_adapter_without_questions():
    adapter = FakeAdapter(adapter_payload(3))
    engine = PredictionEngine(adapter_source=AdapterPredictionSource(adapter))

    outcome = await engine.predict([], "Chemistry", "Finals")

    assert adapter.prompts == []
    assert outcome.source == "heuristic"
    assert outcome.predictions[0].topic == "Chemistry - Fundamentals"
