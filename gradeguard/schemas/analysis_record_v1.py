from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SkillScoreV1(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, validate_assignment=True)

    skill_name: str
    score: float = Field(..., ge=0.0, le=100.0)
    points_earned: float = Field(..., ge=0.0)
    points_possible: float = Field(..., ge=0.0)


class ProcessingMetricsV1(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, validate_assignment=True)

    total_processing_time: float = Field(..., alias="totalProcessingTime", ge=0.0)
    batch_processing_used: bool = Field(..., alias="batchProcessingUsed")
    total_api_calls: float = Field(..., alias="totalApiCalls", ge=0.0)
    avg_questions_per_call: Optional[float] = Field(default=None, alias="avgQuestionsPerCall", ge=0.0)
    optimal_batch_size: Optional[float] = Field(default=None, alias="optimalBatchSize", ge=1.0)
    total_tokens_used: Optional[float] = Field(default=None, alias="totalTokensUsed", ge=0.0)
    estimated_cost_savings: Optional[float] = Field(default=None, alias="estimatedCostSavings", ge=0.0)


class AnalysisRecordV1(BaseModel):
    """Aggregate analysis of a whole test.

    ``total_points_earned <= total_points_possible`` is deliberately not
    checked here; consistency rules belong to the downstream scoring layer.
    """

    model_config = ConfigDict(extra="forbid", strict=True, validate_assignment=True)

    overall_score: float = Field(..., alias="overallScore", ge=0.0, le=100.0)
    grade: Literal["A", "B", "C", "D", "F"]
    total_points_earned: float = Field(..., ge=0.0)
    total_points_possible: float = Field(..., ge=0.0)
    ai_feedback: Optional[str] = None
    content_skill_scores: Optional[List[SkillScoreV1]] = None
    subject_skill_scores: Optional[List[SkillScoreV1]] = None
    processing_metrics: Optional[ProcessingMetricsV1] = Field(default=None, alias="processingMetrics")


__all__ = ["SkillScoreV1", "ProcessingMetricsV1", "AnalysisRecordV1"]
