from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .constants import VALIDATION_VERSION

if TYPE_CHECKING:  # pragma: no cover
    from .errors import RecoveryExhaustedError


class RecordKind(str, Enum):
    """The three JSON shapes the core understands."""

    SINGLE = "single"
    BATCH = "batch"
    ANALYSIS = "analysis"

    @classmethod
    def coerce(cls, value: "RecordKind | str") -> "RecordKind":
        if isinstance(value, RecordKind):
            return value
        key = (value or "").strip().lower()
        if key == "grading":
            return cls.SINGLE
        try:
            return cls(key)
        except ValueError as exc:
            raise ValueError(f"Unknown record kind: {value!r}") from exc


class FailureKind(str, Enum):
    MALFORMED_JSON = "json_parse"
    SCHEMA_VIOLATION = "schema_validation"


@dataclass(frozen=True)
class ValidationOutcome:
    accepted: bool
    value: Any = None
    violations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PerformanceSample:
    record_kind: RecordKind
    batch_size: Optional[int]
    validation_ms: float
    from_cache: bool
    succeeded: bool


@dataclass
class ValidationContext:
    """Caller-supplied tags. Used for metrics and fallback sizing, never for validation."""

    session_id: Optional[str] = None
    batch_size_hint: Optional[int] = None
    model_id: Optional[str] = None
    temperature: Optional[float] = None
    # Hints for fallback synthesis of batch records
    question_count: Optional[int] = None
    file_count: Optional[int] = None
    question_number: Optional[int] = None


@dataclass
class RecoverySession:
    """Bookkeeping for one escalation from failure to success or exhaustion.

    Mutated once per attempt, finalized exactly once, immutable afterwards.
    """

    source_request_id: str
    failure_kind: FailureKind
    record_kind: RecordKind
    id: str = field(default_factory=lambda: f"recovery-{uuid.uuid4().hex[:12]}")
    strategy_name: str = ""
    attempt_count: int = 0
    succeeded: Optional[bool] = None
    total_ms: Optional[float] = None
    attempt_ms: List[float] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)

    @property
    def finalized(self) -> bool:
        return self.succeeded is not None

    def record_attempt(self, strategy_name: str, elapsed_ms: float, violations: List[str] | None = None) -> None:
        if self.finalized:
            raise RuntimeError(f"Recovery session {self.id} is already finalized")
        self.attempt_count += 1
        self.strategy_name = strategy_name
        self.attempt_ms.append(float(elapsed_ms))
        if violations:
            self.violations.extend(violations)

    def finalize(self, succeeded: bool, total_ms: float) -> None:
        if self.finalized:
            raise RuntimeError(f"Recovery session {self.id} is already finalized")
        self.total_ms = float(total_ms)
        self.succeeded = bool(succeeded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_request_id": self.source_request_id,
            "failure_kind": self.failure_kind.value,
            "record_kind": self.record_kind.value,
            "strategy_name": self.strategy_name,
            "attempt_count": self.attempt_count,
            "succeeded": self.succeeded,
            "total_ms": self.total_ms,
            "attempt_ms": list(self.attempt_ms),
            "violations": list(self.violations),
        }


@dataclass
class ResultMetadata:
    processing_time_ms: float
    retry_count: int = 0
    used_cache: bool = False
    recovery_used: bool = False
    recovery_strategy: Optional[str] = None
    validation_version: str = VALIDATION_VERSION


@dataclass
class EnhancedResult:
    success: bool
    metadata: ResultMetadata
    data: Any = None
    errors: List[str] = field(default_factory=list)
    id: Optional[str] = None
    # Set only when recovery was exhausted; re-raised by raise_for_status()
    error: Optional["RecoveryExhaustedError"] = field(default=None, repr=False, compare=False)

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if hasattr(data, "model_dump"):
            data = data.model_dump(by_alias=True, exclude_none=True)
        out: Dict[str, Any] = {
            "success": self.success,
            "metadata": {
                "processingTimeMs": self.metadata.processing_time_ms,
                "retryCount": self.metadata.retry_count,
                "usedCache": self.metadata.used_cache,
                "recoveryUsed": self.metadata.recovery_used,
                "recoveryStrategy": self.metadata.recovery_strategy,
                "validationVersion": self.metadata.validation_version,
            },
        }
        if data is not None:
            out["data"] = data
        if self.errors:
            out["errors"] = list(self.errors)
        if self.id is not None:
            out["id"] = self.id
        return out


@dataclass
class BatchSummary:
    total_items: int
    success_count: int
    failure_count: int
    total_processing_ms: float
    average_item_ms: float
    # Fraction in [0, 1] of items that needed recovery
    recovery_usage_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "totalProcessingTimeMs": self.total_processing_ms,
            "averageItemTimeMs": self.average_item_ms,
            "recoveryUsageRate": self.recovery_usage_rate,
        }


@dataclass
class BatchResult:
    results: List[EnhancedResult]
    summary: BatchSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
        }


@dataclass
class OptimizationReport:
    average_validation_ms: float
    validation_overhead_pct: float
    optimal_batch_size: int
    cache_hit_rate_pct: float
    sample_count: int
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "averageValidationTimeMs": self.average_validation_ms,
            "validationOverheadPercent": self.validation_overhead_pct,
            "optimalBatchSize": self.optimal_batch_size,
            "cacheHitRatePercent": self.cache_hit_rate_pct,
            "sampleCount": self.sample_count,
            "recommendedOptimizations": list(self.recommendations),
        }
