from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .scored_item_v1 import ScoredItemV1


class BatchRecordV1(BaseModel):
    """Several question results graded in one model call."""

    model_config = ConfigDict(extra="forbid", strict=True, validate_assignment=True)

    results: List[ScoredItemV1] = Field(..., min_length=1)
    batch_id: Optional[str] = Field(default=None, alias="batchId")
    processing_time: Optional[float] = Field(default=None, alias="processingTime", ge=0.0)
    model_used: Optional[str] = Field(default=None, alias="modelUsed")


__all__ = ["BatchRecordV1"]
