"""Escalating recovery for malformed or schema-violating LLM payloads.

Strategies are plain records sorted once by priority. The orchestrator walks
them in order, timing each attempt against a :class:`RecoverySession`, and
stops at the first strategy that yields a value the schema validator accepts.
The built-in ladder is ``direct_retry`` -> ``schema_correction`` ->
``fallback_response``; the last one synthesizes an explicitly flagged
placeholder and only fails when the placeholder itself cannot be produced.
"""

from __future__ import annotations

import copy
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from .cache import ValidatorCache
from .config import RuntimeSettings
from .constants import FALLBACK_MARKER
from .errors import MalformedJsonError, RecoveryExhaustedError, SchemaViolationError
from .json_utils import clean_json_response, parse_json, unwrap_payload
from .schemas import AnalysisRecordV1, BatchRecordV1, ScoredItemV1, SkillScoreV1
from .telemetry import MetricsSink, emit
from .types import FailureKind, RecordKind, RecoverySession, ValidationContext
from .validator import compile_validator, validate

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 10
QUESTIONS_PER_FILE = 5


@dataclass(frozen=True)
class RecoveryRequest:
    raw_text: str
    kind: RecordKind
    failure_kind: FailureKind
    request_id: str
    violations: Tuple[str, ...] = ()
    context: Optional[ValidationContext] = None
    # Compiled validator shared by every strategy in one recovery run
    compiled: Any = field(default=None, compare=False, repr=False)


def _always(_request: RecoveryRequest) -> bool:
    return True


@dataclass(frozen=True)
class RecoveryStrategy:
    """One rung of the recovery ladder.

    ``attempt`` returns an accepted record, returns ``None`` to pass, or raises
    :class:`SchemaViolationError` / :class:`MalformedJsonError` with details.
    """

    name: str
    priority: int
    attempt: Callable[[RecoveryRequest], Any]
    can_handle: Callable[[RecoveryRequest], bool] = _always


@dataclass
class RecoveryOutcome:
    value: Any
    session: RecoverySession

    @property
    def strategy_name(self) -> str:
        return self.session.strategy_name

    @property
    def synthetic(self) -> bool:
        return is_synthetic(self.value)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

_SCALAR_BOOL = {"true": True, "false": False, "yes": True, "no": False}
_NUMBER_RE = re.compile(r"^\s*-?\d+(?:\.\d+)?\s*%?\s*$")


def _accept(data: Any, kind: RecordKind, compiled: Any = None) -> Any:
    outcome = validate(data, kind, compiled=compiled)
    if outcome.accepted:
        return outcome.value
    raise SchemaViolationError(f"{kind.value} payload failed validation", outcome.violations)


def _wire_keys(model: type[BaseModel]) -> set[str]:
    return {f.alias or name for name, f in model.model_fields.items()}


_ITEM_KEYS = _wire_keys(ScoredItemV1)
_BATCH_KEYS = _wire_keys(BatchRecordV1)
_ANALYSIS_KEYS = _wire_keys(AnalysisRecordV1)
_SKILL_KEYS = _wire_keys(SkillScoreV1)
_ITEM_SIGNAL_KEYS = {"isCorrect", "questionNumber", "pointsEarned"}
_ANALYSIS_SIGNAL_KEYS = {"overallScore", "grade", "total_points_earned", "total_points_possible"}
_BATCH_ALIASES = ("items", "grades", "questions", "answers", "gradingResults")


def _looks_like_item(obj: Any) -> bool:
    return isinstance(obj, dict) and bool(_ITEM_SIGNAL_KEYS & set(obj))


def _looks_like_batch(obj: Any) -> bool:
    return isinstance(obj, dict) and "results" in obj


def _looks_like_analysis(obj: Any) -> bool:
    return isinstance(obj, dict) and bool(_ANALYSIS_SIGNAL_KEYS & set(obj))


_ITEM_BOOL_FIELDS = ("isCorrect",)
_ITEM_NUMBER_FIELDS = ("questionNumber", "pointsEarned", "confidence")
_BATCH_NUMBER_FIELDS = ("processingTime",)
_ANALYSIS_NUMBER_FIELDS = ("overallScore", "total_points_earned", "total_points_possible")
_SKILL_NUMBER_FIELDS = ("score", "points_earned", "points_possible")


def _as_bool(value: Any) -> Any:
    if isinstance(value, str):
        return _SCALAR_BOOL.get(value.strip().lower(), value)
    return value


def _as_number(value: Any) -> Any:
    if isinstance(value, str) and _NUMBER_RE.match(value):
        text = value.strip().rstrip("%").strip()
        return float(text) if "." in text else int(text)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _coerce_fields(obj: Dict[str, Any], bools: Sequence[str] = (), numbers: Sequence[str] = ()) -> Dict[str, Any]:
    """Turn quoted booleans/numbers back into JSON scalars for the named fields only."""
    out = dict(obj)
    for key in bools:
        if key in out:
            out[key] = _as_bool(out[key])
    for key in numbers:
        if key in out:
            out[key] = _as_number(out[key])
    return out


def _clamp(value: Any, lo: float, hi: Optional[float] = None) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    if value < lo:
        return type(value)(lo)
    if hi is not None and value > hi:
        return type(value)(hi)
    return value


def grade_for_score(score: Any) -> str:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return "F"
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def is_synthetic(value: Any) -> bool:
    """True when ``value`` was manufactured by the fallback strategy."""
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True)
    if not isinstance(value, dict):
        return False
    if FALLBACK_MARKER in str(value.get("reasoning") or ""):
        return True
    if FALLBACK_MARKER in str(value.get("ai_feedback") or ""):
        return True
    return value.get("modelUsed") == "fallback"


# ---------------------------------------------------------------------------
# Strategy 1: direct retry
# ---------------------------------------------------------------------------


def direct_retry(request: RecoveryRequest) -> Any:
    cleaned = clean_json_response(request.raw_text)
    return _accept(parse_json(cleaned), request.kind, request.compiled)


# ---------------------------------------------------------------------------
# Strategy 2: schema-correction heuristics
# ---------------------------------------------------------------------------


def _parse_for_correction(request: RecoveryRequest) -> Any:
    cleaned = clean_json_response(request.raw_text)
    try:
        return parse_json(cleaned)
    except MalformedJsonError:
        if request.kind is not RecordKind.BATCH or not cleaned:
            raise
    # Comma-separated item objects without the surrounding array
    return parse_json(f"[{cleaned}]")


def _patch_item(item: Any, default_number: int) -> Any:
    if not isinstance(item, dict):
        return item
    out = _coerce_fields(item, _ITEM_BOOL_FIELDS, _ITEM_NUMBER_FIELDS)
    if isinstance(out.get("skillAlignment"), str):
        out["skillAlignment"] = [s.strip() for s in out["skillAlignment"].split(",") if s.strip()]
    # Missing numeric fields are only filled in when the verdict itself is present
    if isinstance(out.get("isCorrect"), bool):
        out.setdefault("questionNumber", default_number)
        out.setdefault("pointsEarned", 0)
        out.setdefault("confidence", 0.5)
    if "pointsEarned" in out:
        out["pointsEarned"] = _clamp(out["pointsEarned"], 0.0)
    if "confidence" in out:
        out["confidence"] = _clamp(out["confidence"], 0.0, 1.0)
    return {k: v for k, v in out.items() if k in _ITEM_KEYS}


def _single_patches(request: RecoveryRequest) -> List[Callable[[Any], Any]]:
    ctx = request.context or ValidationContext()
    number = ctx.question_number or 1

    def unwrap(data: Any) -> Any:
        data = unwrap_payload(data, _looks_like_item)
        if isinstance(data, list) and len(data) == 1:
            return data[0]
        if _looks_like_batch(data) and isinstance(data["results"], list) and len(data["results"]) == 1:
            return data["results"][0]
        return data

    def correct(data: Any) -> Any:
        return _patch_item(data, number)

    return [unwrap, correct]


def _batch_patches(request: RecoveryRequest) -> List[Callable[[Any], Any]]:
    def envelope(data: Any) -> Any:
        data = unwrap_payload(data, _looks_like_batch)
        if isinstance(data, list):
            return {"results": data}
        if isinstance(data, dict) and "results" not in data:
            for key in _BATCH_ALIASES:
                if isinstance(data.get(key), list):
                    rest = {k: v for k, v in data.items() if k != key}
                    return {"results": data[key], **rest}
            if _looks_like_item(data):
                return {"results": [data]}
        return data

    def correct_items(data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            return data
        out = _coerce_fields({k: v for k, v in data.items() if k != "results"}, numbers=_BATCH_NUMBER_FIELDS)
        out["results"] = [_patch_item(item, idx) for idx, item in enumerate(data["results"], start=1)]
        if "processingTime" in out:
            out["processingTime"] = _clamp(out["processingTime"], 0.0)
        return {k: v for k, v in out.items() if k in _BATCH_KEYS}

    return [envelope, correct_items]


def _patch_skill(entry: Any) -> Any:
    if not isinstance(entry, dict):
        return entry
    out = _coerce_fields(entry, numbers=_SKILL_NUMBER_FIELDS)
    if "score" in out:
        out["score"] = _clamp(out["score"], 0.0, 100.0)
    for key in ("points_earned", "points_possible"):
        if key in out:
            out[key] = _clamp(out[key], 0.0)
    return {k: v for k, v in out.items() if k in _SKILL_KEYS}


def _analysis_patches(request: RecoveryRequest) -> List[Callable[[Any], Any]]:
    def unwrap(data: Any) -> Any:
        return unwrap_payload(data, _looks_like_analysis)

    def inject(data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = _coerce_fields(data, numbers=_ANALYSIS_NUMBER_FIELDS)
        if isinstance(out.get("grade"), str):
            letter = out["grade"].strip().upper()[:1]
            if letter in {"A", "B", "C", "D", "F"}:
                out["grade"] = letter
        if "overallScore" not in out:
            earned, possible = out.get("total_points_earned"), out.get("total_points_possible")
            if isinstance(earned, (int, float)) and isinstance(possible, (int, float)) and possible > 0:
                out["overallScore"] = round(100.0 * earned / possible, 2)
            else:
                out["overallScore"] = 0
        out.setdefault("grade", grade_for_score(out["overallScore"]))
        return out

    def clamp_and_trim(data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = dict(data)
        out["overallScore"] = _clamp(out.get("overallScore"), 0.0, 100.0)
        for key in ("total_points_earned", "total_points_possible"):
            out[key] = _clamp(out.get(key), 0.0)
        for key in ("content_skill_scores", "subject_skill_scores"):
            if isinstance(out.get(key), list):
                out[key] = [_patch_skill(e) for e in out[key]]
        return {k: v for k, v in out.items() if k in _ANALYSIS_KEYS}

    return [unwrap, inject, clamp_and_trim]


_PATCHES_BY_KIND = {
    RecordKind.SINGLE: _single_patches,
    RecordKind.BATCH: _batch_patches,
    RecordKind.ANALYSIS: _analysis_patches,
}


def schema_correction(request: RecoveryRequest) -> Any:
    data = _parse_for_correction(request)
    compiled = request.compiled if request.compiled is not None else compile_validator(request.kind)
    violations: Sequence[str] = ()
    for patch in _PATCHES_BY_KIND[request.kind](request):
        data = patch(copy.deepcopy(data))
        outcome = validate(data, request.kind, compiled=compiled)
        if outcome.accepted:
            return outcome.value
        violations = outcome.violations
    raise SchemaViolationError("schema correction could not repair the payload", violations)


# ---------------------------------------------------------------------------
# Strategy 3: fallback synthesis
# ---------------------------------------------------------------------------


def estimate_question_count(context: Optional[ValidationContext]) -> int:
    if context is not None:
        if context.question_count is not None:
            return int(context.question_count)
        if context.file_count:
            return max(1, int(context.file_count) * QUESTIONS_PER_FILE)
    return DEFAULT_QUESTION_COUNT


def fallback_scored_item(question_number: int, reason: str = FALLBACK_MARKER) -> Dict[str, Any]:
    return {
        "questionNumber": question_number,
        "isCorrect": False,
        "pointsEarned": 0,
        "confidence": 0.1,
        "reasoning": f"Validation failed: {reason}",
    }


def fallback_batch_record(question_count: int, reason: str = FALLBACK_MARKER) -> Dict[str, Any]:
    return {
        "results": [fallback_scored_item(i, reason) for i in range(1, question_count + 1)],
        "batchId": f"fallback_{int(time.time() * 1000)}",
        "processingTime": 0,
        "modelUsed": "fallback",
    }


def fallback_analysis_record() -> Dict[str, Any]:
    return {
        "overallScore": 0,
        "grade": "F",
        "total_points_earned": 0,
        "total_points_possible": 0,
        "ai_feedback": (
            f"Analysis could not be completed due to technical issues ({FALLBACK_MARKER}). "
            "Please try again."
        ),
        "content_skill_scores": [],
        "subject_skill_scores": [],
    }


def fallback_response(request: RecoveryRequest) -> Any:
    ctx = request.context
    if request.kind is RecordKind.SINGLE:
        payload = fallback_scored_item((ctx.question_number if ctx else None) or 1)
    elif request.kind is RecordKind.BATCH:
        payload = fallback_batch_record(estimate_question_count(ctx))
    else:
        payload = fallback_analysis_record()
    # The placeholder goes through the same schema as real output
    return _accept(payload, request.kind, request.compiled)


def default_strategies() -> List[RecoveryStrategy]:
    return [
        RecoveryStrategy(name="direct_retry", priority=10, attempt=direct_retry),
        RecoveryStrategy(name="schema_correction", priority=20, attempt=schema_correction),
        RecoveryStrategy(name="fallback_response", priority=30, attempt=fallback_response),
    ]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class RecoveryOrchestrator:
    def __init__(
        self,
        settings: Optional[RuntimeSettings] = None,
        strategies: Optional[Sequence[RecoveryStrategy]] = None,
        *,
        sink: Optional[MetricsSink] = None,
        cache: Optional[ValidatorCache] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.settings = settings or RuntimeSettings()
        self.strategies: Tuple[RecoveryStrategy, ...] = tuple(
            sorted(strategies if strategies is not None else default_strategies(), key=lambda s: s.priority)
        )
        self.sink = sink
        self.cache = cache
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self.settings.max_recovery_attempts

    def recover(self, request: RecoveryRequest) -> RecoveryOutcome:
        """Run the strategy ladder; raise :class:`RecoveryExhaustedError` if nothing works."""
        started = self._clock()
        if request.compiled is None and self.cache is not None:
            entry, _hit = self.cache.fetch(request.kind)
            request = replace(request, compiled=entry.compiled)
        session = RecoverySession(
            source_request_id=request.request_id,
            failure_kind=request.failure_kind,
            record_kind=request.kind,
        )
        applicable = [s for s in self.strategies if self._can_handle(s, request)]
        for strategy in applicable[: self.max_attempts]:
            logger.info(
                "recovery attempt %d/%d for %s using %s",
                session.attempt_count + 1,
                self.max_attempts,
                request.kind.value,
                strategy.name,
            )
            attempt_start = self._clock()
            value, violations = self._run_attempt(strategy, request)
            session.record_attempt(strategy.name, (self._clock() - attempt_start) * 1000.0, violations)
            if value is not None:
                session.finalize(True, (self._clock() - started) * 1000.0)
                emit(self.sink, "record_recovery", session)
                return RecoveryOutcome(value=value, session=session)

        session.finalize(False, (self._clock() - started) * 1000.0)
        emit(self.sink, "record_recovery", session)
        chain = list(request.violations) + list(session.violations)
        last = chain[-1] if chain else "no strategy produced a value"
        logger.warning("recovery exhausted for %s after %d attempts: %s", request.kind.value, session.attempt_count, last)
        raise RecoveryExhaustedError(
            f"Recovery failed after {session.attempt_count} attempts: {last}",
            session=session,
            violations=chain,
        )

    @staticmethod
    def _can_handle(strategy: RecoveryStrategy, request: RecoveryRequest) -> bool:
        try:
            return bool(strategy.can_handle(request))
        except Exception as exc:
            logger.warning("strategy %s can_handle raised %s; skipping", strategy.name, exc)
            return False

    @staticmethod
    def _run_attempt(strategy: RecoveryStrategy, request: RecoveryRequest) -> Tuple[Any, List[str]]:
        try:
            value = strategy.attempt(request)
        except SchemaViolationError as exc:
            return None, [f"{strategy.name}: {v}" for v in exc.violations] or [f"{strategy.name}: {exc}"]
        except MalformedJsonError as exc:
            return None, [f"{strategy.name}: {exc}"]
        except Exception as exc:
            logger.warning("strategy %s raised %s: %s", strategy.name, type(exc).__name__, exc)
            return None, [f"{strategy.name}: {type(exc).__name__}: {exc}"]
        if value is None:
            return None, [f"{strategy.name}: produced no value"]
        return value, []


__all__ = [
    "RecoveryRequest",
    "RecoveryStrategy",
    "RecoveryOutcome",
    "RecoveryOrchestrator",
    "default_strategies",
    "direct_retry",
    "schema_correction",
    "fallback_response",
    "estimate_question_count",
    "fallback_scored_item",
    "fallback_batch_record",
    "fallback_analysis_record",
    "grade_for_score",
    "is_synthetic",
]
