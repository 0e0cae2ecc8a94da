from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScoredItemV1(BaseModel):
    """Grading result for a single question."""

    model_config = ConfigDict(extra="forbid", strict=True, validate_assignment=True)

    question_number: int = Field(..., alias="questionNumber", ge=1)
    is_correct: bool = Field(..., alias="isCorrect")
    points_earned: float = Field(..., alias="pointsEarned", ge=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: Optional[str] = None
    skill_alignment: Optional[List[str]] = Field(default=None, alias="skillAlignment")


__all__ = ["ScoredItemV1"]
