"""Public entry point: validate LLM output with tracking and escalating recovery."""

from __future__ import annotations

import concurrent.futures as _fut
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .cache import ValidatorCache
from .config import RuntimeSettings, load_runtime_settings
from .errors import ConfigurationError, MalformedJsonError, RecoveryExhaustedError
from .json_utils import parse_json
from .optimizer import PerformanceOptimizer, estimate_total_processing_ms
from .recovery import RecoveryOrchestrator, RecoveryRequest, RecoveryStrategy
from .telemetry import (
    LoggingMetricsSink,
    MetricsSink,
    PerformanceBenchmark,
    ValidationLogEntry,
    emit,
    timed,
)
from .types import (
    BatchResult,
    BatchSummary,
    EnhancedResult,
    FailureKind,
    RecordKind,
    ResultMetadata,
    ValidationContext,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    raw_text: str
    id: Optional[str] = None


@dataclass
class BatchOptions:
    concurrency: Optional[int] = None
    batch_size_hint: Optional[int] = None
    session_id: Optional[str] = None
    model_id: Optional[str] = None
    temperature: Optional[float] = None
    question_count: Optional[int] = None
    file_count: Optional[int] = None


def _as_batch_item(item: Any) -> BatchItem:
    if isinstance(item, BatchItem):
        return item
    if isinstance(item, str):
        return BatchItem(raw_text=item)
    if isinstance(item, Mapping):
        for key in ("raw_text", "rawText", "jsonString", "text"):
            if key in item:
                ident = item.get("id")
                return BatchItem(raw_text=item[key], id=None if ident is None else str(ident))
    raise TypeError(f"Unsupported batch item: {type(item).__name__}")


def _batch_system_load(total_ms: float) -> str:
    if total_ms > 10_000:
        return "high"
    if total_ms > 5_000:
        return "medium"
    return "low"


class EnhancedValidator:
    """Owns one validator cache, optimizer and recovery orchestrator.

    Instances are independent: two validators never share cache entries or
    performance history.
    """

    def __init__(
        self,
        settings: Optional[RuntimeSettings] = None,
        *,
        sink: Optional[MetricsSink] = None,
        strategies: Optional[Sequence[RecoveryStrategy]] = None,
        estimator: Optional[Callable[[Optional[int]], float]] = None,
        cache: Optional[ValidatorCache] = None,
    ) -> None:
        self.settings = settings or load_runtime_settings()
        self.sink: MetricsSink = sink if sink is not None else LoggingMetricsSink()
        self.cache = cache if cache is not None else ValidatorCache(
            max_size=self.settings.max_cache_size,
            ttl_seconds=self.settings.cache_ttl_seconds,
        )
        self.optimizer = PerformanceOptimizer(
            self.cache,
            self.settings,
            estimator=estimator or estimate_total_processing_ms,
            sink=self.sink,
        )
        self.recovery = RecoveryOrchestrator(self.settings, strategies, sink=self.sink, cache=self.cache)
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()

    def _next_request_id(self) -> str:
        with self._counter_lock:
            n = next(self._counter)
        return f"req_{n}_{int(time.time() * 1000)}"

    def validate_one(
        self,
        raw_text: str,
        kind: RecordKind | str,
        context: Optional[ValidationContext] = None,
    ) -> EnhancedResult:
        """Validate one payload, escalating to recovery on parse or schema failure."""
        start = time.perf_counter()
        kind = RecordKind.coerce(kind)
        ctx = context or ValidationContext()
        request_id = self._next_request_id()
        session_id = ctx.session_id or f"session_{int(time.time() * 1000)}"
        used_cache = False

        try:
            parsed = parse_json(raw_text)
        except MalformedJsonError as exc:
            failure_kind = FailureKind.MALFORMED_JSON
            violations: Sequence[str] = (str(exc),)
        else:
            outcome, sample = self.optimizer.tracked_validate(parsed, kind, ctx.batch_size_hint)
            used_cache = sample.from_cache
            if outcome.accepted:
                elapsed_ms = (time.perf_counter() - start) * 1000.0
                self._log_validation(
                    kind, ctx, session_id, raw_text,
                    success=True, processing_ms=elapsed_ms, retry_count=0,
                    user_context={"enhanced": True, "cached": used_cache},
                )
                return EnhancedResult(
                    success=True,
                    data=outcome.value,
                    metadata=ResultMetadata(processing_time_ms=elapsed_ms, used_cache=used_cache),
                )
            failure_kind = FailureKind.SCHEMA_VIOLATION
            violations = outcome.violations

        logger.info("initial validation failed for %s (%s); attempting recovery", kind.value, failure_kind.value)
        request = RecoveryRequest(
            raw_text=raw_text if isinstance(raw_text, str) else "",
            kind=kind,
            failure_kind=failure_kind,
            request_id=request_id,
            violations=tuple(violations),
            context=ctx,
        )
        try:
            recovered = self.recovery.recover(request)
        except RecoveryExhaustedError as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            retry_count = exc.session.attempt_count if exc.session else self.settings.max_recovery_attempts
            message = f"Enhanced validation failed: {exc}"
            self._log_validation(
                kind, ctx, session_id, raw_text,
                success=False, processing_ms=elapsed_ms, retry_count=retry_count,
                validation_type=failure_kind,
                error_message=message,
                error_details={"violations": exc.violations},
                user_context={"enhanced": True, "recoveryFailed": True},
            )
            return EnhancedResult(
                success=False,
                errors=[message, *exc.violations],
                metadata=ResultMetadata(
                    processing_time_ms=elapsed_ms,
                    retry_count=retry_count,
                    used_cache=used_cache,
                    recovery_used=True,
                ),
                error=exc,
            )

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        session = recovered.session
        self._log_validation(
            kind, ctx, session_id, raw_text,
            success=True, processing_ms=elapsed_ms, retry_count=session.attempt_count,
            validation_type=failure_kind,
            user_context={
                "enhanced": True,
                "recoveryUsed": True,
                "recoveryStrategy": session.strategy_name,
                "synthetic": recovered.synthetic,
            },
        )
        return EnhancedResult(
            success=True,
            data=recovered.value,
            metadata=ResultMetadata(
                processing_time_ms=elapsed_ms,
                retry_count=session.attempt_count,
                used_cache=used_cache,
                recovery_used=True,
                recovery_strategy=session.strategy_name,
            ),
        )

    def validate_batch(
        self,
        items: Iterable[Any],
        kind: RecordKind | str,
        options: Optional[BatchOptions] = None,
    ) -> BatchResult:
        """Validate many payloads in chunks of ``concurrency``, preserving input order."""
        opts = options or BatchOptions()
        concurrency = opts.concurrency if opts.concurrency is not None else self.settings.default_concurrency
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency <= 0:
            raise ConfigurationError(f"concurrency must be a positive integer (got {concurrency!r})")
        kind = RecordKind.coerce(kind)
        batch = [_as_batch_item(item) for item in items]
        ctx = ValidationContext(
            session_id=opts.session_id or f"batch_{int(time.time() * 1000)}",
            batch_size_hint=opts.batch_size_hint or (len(batch) or None),
            model_id=opts.model_id,
            temperature=opts.temperature,
            question_count=opts.question_count,
            file_count=opts.file_count,
        )
        logger.info("starting batch validation: %d items, concurrency %d", len(batch), concurrency)

        start = time.perf_counter()
        results: List[EnhancedResult] = []
        with timed("batch_validation", {"items": len(batch), "workers": concurrency, "kind": kind.value}):
            with _fut.ThreadPoolExecutor(max_workers=concurrency) as ex:
                for offset in range(0, len(batch), concurrency):
                    chunk = batch[offset : offset + concurrency]
                    futures = [ex.submit(self.validate_one, item.raw_text, kind, ctx) for item in chunk]
                    # Collecting every future before the next submit bounds in-flight work to one chunk
                    for idx, (item, fut) in enumerate(zip(chunk, futures)):
                        try:
                            result = fut.result()
                        except Exception as exc:
                            logger.error("batch item %d failed: %s", offset + idx, exc)
                            result = EnhancedResult(
                                success=False,
                                errors=[str(exc) or "Unknown batch processing error"],
                                metadata=ResultMetadata(processing_time_ms=0.0),
                            )
                        result.id = item.id
                        results.append(result)

        total_ms = (time.perf_counter() - start) * 1000.0
        summary = self._summarize(results, total_ms)
        self._log_batch(kind, results, summary, concurrency)
        logger.info(
            "batch validation complete: %d/%d successful", summary.success_count, summary.total_items
        )
        return BatchResult(results=results, summary=summary)

    def statistics(self) -> Dict[str, Any]:
        return {
            "optimization": self.optimizer.recommend().to_dict(),
            "cache": self.cache.stats(),
        }

    @staticmethod
    def _summarize(results: List[EnhancedResult], total_ms: float) -> BatchSummary:
        total = len(results)
        success = sum(1 for r in results if r.success)
        recovered = sum(1 for r in results if r.metadata.recovery_used)
        return BatchSummary(
            total_items=total,
            success_count=success,
            failure_count=total - success,
            total_processing_ms=total_ms,
            average_item_ms=(total_ms / total) if total else 0.0,
            recovery_usage_rate=(recovered / total) if total else 0.0,
        )

    def _log_validation(
        self,
        kind: RecordKind,
        ctx: ValidationContext,
        session_id: str,
        raw_text: Any,
        *,
        success: bool,
        processing_ms: float,
        retry_count: int,
        validation_type: FailureKind | str = "schema",
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        vtype = "json_parse" if validation_type == FailureKind.MALFORMED_JSON else "schema"
        emit(
            self.sink,
            "log_validation",
            ValidationLogEntry(
                operation_type=kind.value,
                validation_type=vtype,
                success=success,
                error_message=error_message,
                error_details=error_details or {},
                processing_time_ms=processing_ms,
                input_size_bytes=len(raw_text.encode("utf-8")) if isinstance(raw_text, str) else None,
                retry_count=retry_count,
                model_used=ctx.model_id,
                temperature=ctx.temperature,
                session_id=session_id,
                user_context=user_context or {},
            ),
        )

    def _log_batch(
        self,
        kind: RecordKind,
        results: List[EnhancedResult],
        summary: BatchSummary,
        concurrency: int,
    ) -> None:
        validation_ms = sum(r.metadata.processing_time_ms for r in results)
        estimated = self.optimizer.estimator(summary.total_items or None)
        emit(
            self.sink,
            "log_benchmark",
            PerformanceBenchmark(
                operation_type=f"batch_{kind.value}",
                batch_size=summary.total_items,
                total_processing_time_ms=summary.total_processing_ms,
                validation_time_ms=validation_ms,
                validation_overhead_percent=(validation_ms / estimated * 100.0) if estimated > 0 else 0.0,
                success_rate=(summary.success_count / summary.total_items * 100.0) if summary.total_items else 0.0,
                system_load=_batch_system_load(summary.total_processing_ms),
                optimization_notes=(
                    f"Enhanced batch validation with {concurrency} concurrency, "
                    f"{summary.recovery_usage_rate * 100.0:.1f}% recovery usage"
                ),
            ),
        )


__all__ = ["BatchItem", "BatchOptions", "EnhancedValidator"]
