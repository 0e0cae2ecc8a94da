from __future__ import annotations

"""Shared helpers for constructing canonical grading payloads in tests."""

import json
from typing import Any


def make_scored_item(number: int = 1, correct: bool = True, **overrides: Any) -> dict[str, Any]:
    item: dict[str, Any] = {
        "questionNumber": number,
        "isCorrect": correct,
        "pointsEarned": 1 if correct else 0,
        "confidence": 0.9,
    }
    item.update(overrides)
    return item


def make_batch_record(count: int = 3, **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "results": [make_scored_item(i, correct=(i % 2 == 1)) for i in range(1, count + 1)],
        "batchId": "batch_001",
        "processingTime": 1250,
        "modelUsed": "gpt-4o-mini",
    }
    record.update(overrides)
    return record


def make_analysis_record(**overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "overallScore": 85,
        "grade": "B",
        "total_points_earned": 17,
        "total_points_possible": 20,
        "ai_feedback": "Strong on fractions, review ratios.",
        "content_skill_scores": [
            {"skill_name": "Fractions", "score": 90, "points_earned": 9, "points_possible": 10},
        ],
        "subject_skill_scores": [
            {"skill_name": "Number Sense", "score": 80, "points_earned": 8, "points_possible": 10},
        ],
    }
    record.update(overrides)
    return record


def as_text(payload: Any) -> str:
    return json.dumps(payload)


__all__ = ["make_scored_item", "make_batch_record", "make_analysis_record", "as_text"]
