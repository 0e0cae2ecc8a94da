from __future__ import annotations

from typing import Dict, Type

from pydantic import BaseModel

from ..types import RecordKind
from .analysis_record_v1 import AnalysisRecordV1
from .batch_record_v1 import BatchRecordV1
from .scored_item_v1 import ScoredItemV1

SCHEMA_BY_KIND: Dict[RecordKind, Type[BaseModel]] = {
    RecordKind.SINGLE: ScoredItemV1,
    RecordKind.BATCH: BatchRecordV1,
    RecordKind.ANALYSIS: AnalysisRecordV1,
}


def schema_for(kind: RecordKind | str) -> Type[BaseModel]:
    return SCHEMA_BY_KIND[RecordKind.coerce(kind)]
