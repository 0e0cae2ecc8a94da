from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from .constants import SCHEMA_VERSION
from .types import RecoverySession

log = logging.getLogger("gradeguard.telemetry")

SystemLoad = Literal["low", "medium", "high", "critical"]


class ValidationLogEntry(BaseModel):
    """One structured record per validation call."""

    operation_type: str
    validation_type: Literal["schema", "json_parse", "response_format"] = "schema"
    success: bool
    error_message: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: float = 0.0
    input_size_bytes: Optional[int] = None
    retry_count: int = 0
    schema_version: str = SCHEMA_VERSION
    model_used: Optional[str] = None
    temperature: Optional[float] = None
    session_id: Optional[str] = None
    user_context: Dict[str, Any] = Field(default_factory=dict)


class PerformanceBenchmark(BaseModel):
    """One structured record per tracked validation or per batch."""

    operation_type: str
    batch_size: Optional[int] = None
    total_processing_time_ms: float
    validation_time_ms: float
    validation_overhead_percent: float = 0.0
    success_rate: float
    system_load: SystemLoad = "low"
    optimization_notes: Optional[str] = None


@runtime_checkable
class MetricsSink(Protocol):
    """Collaborator that stores or forwards what the core emits."""

    def log_validation(self, entry: ValidationLogEntry) -> None:  # pragma: no cover - Protocol stub
        ...

    def log_benchmark(self, benchmark: PerformanceBenchmark) -> None:  # pragma: no cover - Protocol stub
        ...

    def record_recovery(self, session: RecoverySession) -> None:  # pragma: no cover - Protocol stub
        ...


class NullMetricsSink:
    def log_validation(self, entry: ValidationLogEntry) -> None:
        return None

    def log_benchmark(self, benchmark: PerformanceBenchmark) -> None:
        return None

    def record_recovery(self, session: RecoverySession) -> None:
        return None


class LoggingMetricsSink:
    """Writes every metrics record to the ``gradeguard.telemetry`` logger."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO) -> None:
        self._log = logger or log
        self._level = level

    def log_validation(self, entry: ValidationLogEntry) -> None:
        level = self._level if entry.success else logging.WARNING
        self._log.log(level, "validation", extra={"metrics": entry.model_dump()})

    def log_benchmark(self, benchmark: PerformanceBenchmark) -> None:
        self._log.log(self._level, "benchmark", extra={"metrics": benchmark.model_dump()})

    def record_recovery(self, session: RecoverySession) -> None:
        level = self._level if session.succeeded else logging.WARNING
        self._log.log(level, "recovery_session", extra={"metrics": session.to_dict()})


class InMemoryMetricsSink:
    """Thread-safe collector, handy for dashboards and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.validations: List[ValidationLogEntry] = []
        self.benchmarks: List[PerformanceBenchmark] = []
        self.recoveries: List[Dict[str, Any]] = []

    def log_validation(self, entry: ValidationLogEntry) -> None:
        with self._lock:
            self.validations.append(entry)

    def log_benchmark(self, benchmark: PerformanceBenchmark) -> None:
        with self._lock:
            self.benchmarks.append(benchmark)

    def record_recovery(self, session: RecoverySession) -> None:
        # Snapshot: the core hands the session over and does not keep it
        with self._lock:
            self.recoveries.append(session.to_dict())


def emit(sink: Optional[MetricsSink], method: str, payload: Any) -> None:
    """Forward ``payload`` to ``sink.method``; metrics failures never break validation."""
    if sink is None:
        return
    try:
        getattr(sink, method)(payload)
    except Exception as exc:
        log.warning("metrics sink %s.%s failed: %s", type(sink).__name__, method, exc)


def system_load_for(validation_ms: float) -> SystemLoad:
    if validation_ms < 10:
        return "low"
    if validation_ms < 50:
        return "medium"
    if validation_ms < 200:
        return "high"
    return "critical"


@contextmanager
def timed(stage: str, ctx: Dict[str, Any] | None = None):
    """Context manager that logs elapsed ms for the given stage."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        payload = {"stage": stage, "ms": round(elapsed_ms, 3)}
        if ctx:
            payload.update(ctx)
        log.debug("timing", extra={"timing": payload})


__all__ = [
    "ValidationLogEntry",
    "PerformanceBenchmark",
    "MetricsSink",
    "NullMetricsSink",
    "LoggingMetricsSink",
    "InMemoryMetricsSink",
    "emit",
    "system_load_for",
    "timed",
]
