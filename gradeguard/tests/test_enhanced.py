from __future__ import annotations

import threading
import time

import pytest

from gradeguard.config import RuntimeSettings
from gradeguard.constants import VALIDATION_VERSION
from gradeguard.enhanced import BatchItem, BatchOptions, EnhancedValidator
from gradeguard.errors import ConfigurationError, RecoveryExhaustedError
from gradeguard.recovery import is_synthetic
from gradeguard.types import RecordKind, ValidationContext
from gradeguard.tests._samples import as_text, make_analysis_record, make_batch_record, make_scored_item


def test_valid_single_payload_end_to_end(validator):
    raw = '{"questionNumber":1,"isCorrect":true,"pointsEarned":1,"confidence":0.9}'
    result = validator.validate_one(raw, RecordKind.SINGLE)
    assert result.success is True
    assert result.data.points_earned == 1
    assert result.metadata.recovery_used is False
    assert result.metadata.retry_count == 0
    assert result.metadata.recovery_strategy is None
    assert result.metadata.validation_version == VALIDATION_VERSION
    assert result.errors == []
    result.raise_for_status()

    payload = result.to_dict()
    assert payload["data"]["pointsEarned"] == 1
    assert payload["metadata"]["recoveryUsed"] is False


def test_second_validation_uses_cache(validator):
    raw = as_text(make_scored_item())
    assert validator.validate_one(raw, "single").metadata.used_cache is False
    assert validator.validate_one(raw, "single").metadata.used_cache is True


def test_fenced_partial_payload_recovers_in_two_attempts(validator, sink):
    result = validator.validate_one('```json\n{"isCorrect":true}\n```', RecordKind.SINGLE)
    assert result.success is True
    assert result.metadata.recovery_used is True
    assert result.metadata.retry_count == 2
    assert result.metadata.recovery_strategy == "schema_correction"
    assert result.data.points_earned == 0
    assert result.data.confidence == 0.5

    assert len(sink.recoveries) == 1
    assert sink.recoveries[0]["failure_kind"] == "json_parse"
    assert sink.recoveries[0]["source_request_id"].startswith("req_")
    entry = sink.validations[-1]
    assert entry.success is True
    assert entry.validation_type == "json_parse"
    assert entry.retry_count == 2


def test_out_of_bound_confidence_is_clamped_on_second_attempt(validator):
    # Direct retry re-validates the same value, so correction is the first rung that can succeed
    result = validator.validate_one(as_text(make_scored_item(confidence=1.4)), "single")
    assert result.success is True
    assert result.metadata.retry_count == 2
    assert result.data.confidence == 1.0


def test_unrecoverable_payload_reports_failure(validator, sink):
    ctx = ValidationContext(question_count=0)
    result = validator.validate_one("The model refused to grade.", RecordKind.BATCH, ctx)
    assert result.success is False
    assert result.data is None
    assert result.metadata.recovery_used is True
    assert result.metadata.retry_count == 3
    assert result.errors[0].startswith("Enhanced validation failed:")
    assert any(e.startswith("JSON parsing failed") for e in result.errors[1:])
    with pytest.raises(RecoveryExhaustedError) as excinfo:
        result.raise_for_status()
    assert excinfo.value.session.succeeded is False

    entry = sink.validations[-1]
    assert entry.success is False
    assert entry.error_message == result.errors[0]
    assert sink.recoveries[-1]["succeeded"] is False


def test_fallback_results_are_successful_but_flagged(validator, sink):
    ctx = ValidationContext(question_count=2)
    result = validator.validate_one("no usable output", "batch", ctx)
    assert result.success is True
    assert result.metadata.recovery_strategy == "fallback_response"
    assert result.data.model_used == "fallback"
    assert len(result.data.results) == 2
    assert sink.validations[-1].user_context["synthetic"] is True


def test_analysis_payload_in_envelope_is_recovered(validator):
    raw = as_text({"result": make_analysis_record()})
    result = validator.validate_one(raw, RecordKind.ANALYSIS)
    assert result.success is True
    assert result.metadata.recovery_strategy == "schema_correction"
    assert result.data.grade == "B"


def test_validators_do_not_share_state(settings, sink):
    a = EnhancedValidator(settings, sink=sink)
    b = EnhancedValidator(settings, sink=sink)
    a.validate_one(as_text(make_scored_item()), "single")
    assert len(a.cache) == 1
    assert len(b.cache) == 0
    assert b.optimizer.samples() == []


def test_batch_preserves_order_and_identity_with_single_worker(validator, monkeypatch):
    original = validator.validate_one

    def slow_first(raw, kind, ctx=None):
        if "slow" in raw:
            time.sleep(0.05)
        return original(raw, kind, ctx)

    monkeypatch.setattr(validator, "validate_one", slow_first)
    items = [
        {"id": "a", "rawText": as_text(make_scored_item(1, reasoning="slow"))},
        {"id": "b", "rawText": as_text(make_scored_item(2))},
    ]
    batch = validator.validate_batch(items, RecordKind.SINGLE, BatchOptions(concurrency=1))
    assert [r.id for r in batch.results] == ["a", "b"]
    assert [r.data.question_number for r in batch.results] == [1, 2]


def test_batch_preserves_order_when_later_items_finish_first(validator, monkeypatch):
    original = validator.validate_one
    finished: list = []

    def slow_first(raw, kind, ctx=None):
        if "slow" in raw:
            time.sleep(0.1)
        result = original(raw, kind, ctx)
        finished.append(raw)
        return result

    monkeypatch.setattr(validator, "validate_one", slow_first)
    items = [
        BatchItem(as_text(make_scored_item(1, reasoning="slow")), id="a"),
        BatchItem(as_text(make_scored_item(2)), id="b"),
        BatchItem(as_text(make_scored_item(3)), id="c"),
    ]
    batch = validator.validate_batch(items, "single", BatchOptions(concurrency=3))
    assert "slow" in finished[-1]
    assert [r.id for r in batch.results] == ["a", "b", "c"]


def test_batch_runs_in_chunks_of_concurrency(validator, monkeypatch):
    original = validator.validate_one
    lock = threading.Lock()
    state = {"inflight": 0, "peak": 0, "completed": 0}
    seen_completed: list = []

    def tracked(raw, kind, ctx=None):
        with lock:
            seen_completed.append(state["completed"])
            state["inflight"] += 1
            state["peak"] = max(state["peak"], state["inflight"])
        time.sleep(0.02)
        try:
            return original(raw, kind, ctx)
        finally:
            with lock:
                state["inflight"] -= 1
                state["completed"] += 1

    monkeypatch.setattr(validator, "validate_one", tracked)
    items = [{"id": str(i), "text": as_text(make_scored_item(i))} for i in range(1, 7)]
    batch = validator.validate_batch(items, RecordKind.SINGLE, BatchOptions(concurrency=5))

    assert batch.summary.total_items == 6
    assert batch.summary.success_count == 6
    assert state["peak"] <= 5
    # The sixth item starts only after the whole first chunk has finished
    assert sorted(seen_completed)[-1] == 5
    assert all(n < 5 for n in sorted(seen_completed)[:-1])


def test_batch_isolates_item_failures(validator, monkeypatch):
    original = validator.validate_one

    def flaky(raw, kind, ctx=None):
        if "boom" in raw:
            raise RuntimeError("worker crashed")
        return original(raw, kind, ctx)

    monkeypatch.setattr(validator, "validate_one", flaky)
    items = [
        {"id": "ok", "text": as_text(make_scored_item(1))},
        {"id": "bad", "text": as_text(make_scored_item(2, reasoning="boom"))},
    ]
    batch = validator.validate_batch(items, "single", BatchOptions(concurrency=2))
    assert [r.success for r in batch.results] == [True, False]
    assert batch.results[1].id == "bad"
    assert batch.results[1].errors == ["worker crashed"]
    assert batch.summary.failure_count == 1


def test_batch_summary_and_benchmark(validator, sink):
    items = [
        as_text(make_batch_record(2)),
        '{"results": [{"isCorrect": true}]}',
        as_text(make_batch_record(1)),
    ]
    batch = validator.validate_batch(items, RecordKind.BATCH, BatchOptions(concurrency=2, model_id="gpt-4o-mini"))
    summary = batch.summary
    assert summary.total_items == 3
    assert summary.success_count == 3
    assert summary.failure_count == 0
    assert summary.recovery_usage_rate == pytest.approx(1 / 3)
    assert summary.average_item_ms == pytest.approx(summary.total_processing_ms / 3)
    assert [r.id for r in batch.results] == [None, None, None]

    batch_benchmarks = [b for b in sink.benchmarks if b.operation_type == "batch_batch"]
    assert len(batch_benchmarks) == 1
    assert batch_benchmarks[0].batch_size == 3
    assert batch_benchmarks[0].success_rate == pytest.approx(100.0)
    assert all(v.model_used == "gpt-4o-mini" for v in sink.validations)

    payload = batch.to_dict()
    assert payload["summary"]["totalItems"] == 3
    assert len(payload["results"]) == 3


def test_empty_batch(validator):
    batch = validator.validate_batch([], "single")
    assert batch.results == []
    assert batch.summary.total_items == 0
    assert batch.summary.average_item_ms == 0.0
    assert batch.summary.recovery_usage_rate == 0.0


@pytest.mark.parametrize("concurrency", [0, -2])
def test_batch_rejects_non_positive_concurrency(validator, concurrency):
    with pytest.raises(ConfigurationError):
        validator.validate_batch(["{}"], "single", BatchOptions(concurrency=concurrency))


def test_batch_rejects_unknown_item_shape(validator):
    with pytest.raises(TypeError):
        validator.validate_batch([{"id": "x"}], "single")


def test_batch_uses_default_concurrency_from_settings(sink, monkeypatch):
    validator = EnhancedValidator(RuntimeSettings(default_concurrency=2), sink=sink)
    peak = {"now": 0, "max": 0}
    lock = threading.Lock()
    original = validator.validate_one

    def tracked(raw, kind, ctx=None):
        with lock:
            peak["now"] += 1
            peak["max"] = max(peak["max"], peak["now"])
        time.sleep(0.01)
        try:
            return original(raw, kind, ctx)
        finally:
            with lock:
                peak["now"] -= 1

    monkeypatch.setattr(validator, "validate_one", tracked)
    validator.validate_batch([as_text(make_scored_item(i)) for i in range(1, 6)], "single")
    assert peak["max"] <= 2


def test_statistics_combines_optimizer_and_cache(validator):
    validator.validate_one(as_text(make_scored_item()), "single")
    validator.validate_one(as_text(make_scored_item()), "single")
    stats = validator.statistics()
    assert stats["cache"]["cache_size"] == 1
    assert stats["cache"]["total_hits"] == 1
    assert stats["optimization"]["sampleCount"] == 2
    assert stats["optimization"]["cacheHitRatePercent"] == pytest.approx(50.0)


def test_bracketed_prose_before_the_record_is_not_replaced_by_fallback(validator):
    raw = 'Grade for question [1]:\n{"questionNumber":1,"isCorrect":true,"pointsEarned":1,"confidence":0.9}'
    result = validator.validate_one(raw, RecordKind.SINGLE)
    assert result.success is True
    assert result.metadata.recovery_strategy == "direct_retry"
    assert result.metadata.retry_count == 1
    assert not is_synthetic(result.data)
    assert result.data.points_earned == 1


def test_deeply_nested_input_degrades_to_fallback(validator, sink):
    result = validator.validate_one("[" * 200_000, RecordKind.SINGLE)
    assert result.success is True
    assert result.metadata.recovery_strategy == "fallback_response"
    assert result.metadata.retry_count == 3
    assert is_synthetic(result.data)
    assert sink.validations[-1].validation_type == "json_parse"


def test_deeply_nested_batch_item_does_not_abort_the_batch(validator):
    items = ["[" * 200_000, as_text(make_scored_item(2))]
    batch = validator.validate_batch(items, RecordKind.SINGLE, BatchOptions(concurrency=2))
    assert [r.success for r in batch.results] == [True, True]
    assert is_synthetic(batch.results[0].data)
    assert not is_synthetic(batch.results[1].data)


def test_analysis_without_point_totals_is_not_given_invented_totals(validator):
    result = validator.validate_one('{"overallScore":85,"grade":"B"}', RecordKind.ANALYSIS)
    assert result.success is True
    assert result.metadata.recovery_strategy == "fallback_response"
    assert is_synthetic(result.data)
    assert result.data.overall_score == 0


def test_recovery_reuses_the_cached_validator(validator, monkeypatch):
    import gradeguard.validator as validator_module

    compiles = []
    original = validator_module.compile_validator

    def counting(kind):
        compiles.append(kind)
        return original(kind)

    monkeypatch.setattr(validator_module, "compile_validator", counting)
    result = validator.validate_one('{"results": [{"isCorrect": true}, {"isCorrect": false}]}', "batch")
    assert result.metadata.recovery_strategy == "schema_correction"
    assert compiles == []
    assert len(validator.cache) == 1
