"""Canonical Pydantic schemas for the three LLM grading record kinds."""

from .scored_item_v1 import ScoredItemV1
from .batch_record_v1 import BatchRecordV1
from .analysis_record_v1 import AnalysisRecordV1, ProcessingMetricsV1, SkillScoreV1
from ._registry import SCHEMA_BY_KIND, schema_for

__all__ = [
    "ScoredItemV1",
    "BatchRecordV1",
    "AnalysisRecordV1",
    "ProcessingMetricsV1",
    "SkillScoreV1",
    "SCHEMA_BY_KIND",
    "schema_for",
]
