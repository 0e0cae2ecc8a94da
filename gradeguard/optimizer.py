from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

import numpy as np

from .cache import ValidatorCache
from .config import RuntimeSettings
from .telemetry import MetricsSink, PerformanceBenchmark, emit, system_load_for
from .types import OptimizationReport, PerformanceSample, RecordKind, ValidationOutcome
from .validator import validate

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No performance data available"
OPTIMAL_MESSAGE = "Performance is optimal"


def estimate_total_processing_ms(batch_size: Optional[int]) -> float:
    """Rough end-to-end processing time used as the overhead baseline.

    100ms per item when the batch size is known, otherwise a flat 1000ms.
    """
    if batch_size:
        return float(batch_size) * 100.0
    return 1000.0


class PerformanceOptimizer:
    """Times cached validations and turns the samples into tuning advice."""

    def __init__(
        self,
        cache: ValidatorCache,
        settings: Optional[RuntimeSettings] = None,
        *,
        estimator: Callable[[Optional[int]], float] = estimate_total_processing_ms,
        sink: Optional[MetricsSink] = None,
    ) -> None:
        self.cache = cache
        self.settings = settings or RuntimeSettings()
        self.estimator = estimator
        self.sink = sink
        self._samples: Deque[PerformanceSample] = deque(maxlen=self.settings.sample_capacity)
        self._lock = threading.Lock()

    def tracked_validate(
        self,
        value: object,
        kind: RecordKind | str,
        batch_size_hint: Optional[int] = None,
    ) -> Tuple[ValidationOutcome, PerformanceSample]:
        kind = RecordKind.coerce(kind)
        start = time.perf_counter()
        entry, from_cache = self.cache.fetch(kind)
        outcome = validate(value, kind, compiled=entry.compiled)
        validation_ms = (time.perf_counter() - start) * 1000.0

        sample = PerformanceSample(
            record_kind=kind,
            batch_size=batch_size_hint,
            validation_ms=validation_ms,
            from_cache=from_cache,
            succeeded=outcome.accepted,
        )
        self.record(sample)

        estimated_total = self.estimator(batch_size_hint)
        emit(
            self.sink,
            "log_benchmark",
            PerformanceBenchmark(
                operation_type=kind.value,
                batch_size=batch_size_hint,
                total_processing_time_ms=estimated_total,
                validation_time_ms=validation_ms,
                validation_overhead_percent=self._overhead_pct(validation_ms, estimated_total),
                success_rate=100.0 if outcome.accepted else 0.0,
                system_load=system_load_for(validation_ms),
                optimization_notes="Used cached schema" if from_cache else "Compiled new schema",
            ),
        )
        return outcome, sample

    def record(self, sample: PerformanceSample) -> None:
        """Append a sample; the oldest one is dropped once capacity is reached."""
        with self._lock:
            self._samples.append(sample)

    def samples(self) -> List[PerformanceSample]:
        with self._lock:
            return list(self._samples)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
        self.cache.clear()
        logger.info("performance history and validator cache cleared")

    def recommend(self) -> OptimizationReport:
        s = self.settings
        with self._lock:
            recent = list(self._samples)[-s.recommend_window :]

        hit_rate_pct = self.cache.hit_rate() * 100.0
        if not recent:
            return OptimizationReport(
                average_validation_ms=0.0,
                validation_overhead_pct=0.0,
                optimal_batch_size=s.default_batch_size,
                cache_hit_rate_pct=hit_rate_pct,
                sample_count=0,
                recommendations=[NO_DATA_MESSAGE],
            )

        times = np.asarray([m.validation_ms for m in recent], dtype=float)
        overheads = np.asarray(
            [self._overhead_pct(m.validation_ms, self.estimator(m.batch_size)) for m in recent],
            dtype=float,
        )
        average_ms = float(times.mean())
        overhead_pct = float(overheads.mean())
        optimal = self._optimal_batch_size(recent)

        recommendations: List[str] = []
        if average_ms > s.slow_validation_ms:
            recommendations.append("Consider implementing parallel validation for large batches")
        if overhead_pct > s.high_overhead_pct:
            recommendations.append("Validation overhead is high - consider schema caching optimization")
        if hit_rate_pct < s.low_hit_rate_pct:
            recommendations.append("Low cache hit rate - consider extending cache TTL or pre-warming cache")
        if optimal > s.large_batch_size:
            recommendations.append(f"Increase batch size to {optimal} for better performance")
        elif optimal < s.small_batch_size:
            recommendations.append("Decrease batch size to reduce individual processing time")

        return OptimizationReport(
            average_validation_ms=average_ms,
            validation_overhead_pct=overhead_pct,
            optimal_batch_size=optimal,
            cache_hit_rate_pct=hit_rate_pct,
            sample_count=len(recent),
            recommendations=recommendations or [OPTIMAL_MESSAGE],
        )

    def _optimal_batch_size(self, samples: List[PerformanceSample]) -> int:
        per_item: Dict[int, List[float]] = {}
        for m in samples:
            if not m.batch_size or m.batch_size <= 0:
                continue
            per_item.setdefault(int(m.batch_size), []).append(m.validation_ms / m.batch_size)
        if not per_item:
            return self.settings.default_batch_size
        ranked = sorted(per_item.items(), key=lambda kv: (float(np.mean(kv[1])), kv[0]))
        return ranked[0][0]

    @staticmethod
    def _overhead_pct(validation_ms: float, estimated_total_ms: float) -> float:
        if estimated_total_ms <= 0:
            return 0.0
        return (validation_ms / estimated_total_ms) * 100.0


__all__ = [
    "NO_DATA_MESSAGE",
    "OPTIMAL_MESSAGE",
    "PerformanceOptimizer",
    "estimate_total_processing_ms",
]
