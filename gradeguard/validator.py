"""Structural and semantic validation of parsed LLM payloads.

Pure functions only: nothing here touches shared state, so the same value and
record kind always produce the same outcome.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from .schemas import schema_for
from .types import RecordKind, ValidationOutcome


def compile_validator(kind: RecordKind | str) -> TypeAdapter:
    """Build the compiled validator handle for ``kind``."""
    return TypeAdapter(schema_for(kind))


def format_violations(exc: ValidationError) -> List[str]:
    """Render every pydantic error as ``/path/to/field: message``."""
    out: List[str] = []
    for err in exc.errors(include_url=False):
        loc = err.get("loc") or ()
        path = "/" + "/".join(str(part) for part in loc) if loc else "(root)"
        out.append(f"{path}: {err.get('msg', 'invalid value')}")
    return out or ["(root): unknown validation error"]


def validate(value: Any, kind: RecordKind | str, compiled: Optional[TypeAdapter] = None) -> ValidationOutcome:
    """Validate ``value`` against the schema for ``kind``.

    Extra keys are violations, bounds are inclusive and nothing is clamped.
    All violations are reported, not only the first one.
    """
    adapter = compiled if compiled is not None else compile_validator(kind)
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True, exclude_none=True)
    try:
        parsed = adapter.validate_python(value)
    except ValidationError as exc:
        return ValidationOutcome(accepted=False, value=None, violations=tuple(format_violations(exc)))
    return ValidationOutcome(accepted=True, value=parsed, violations=())


__all__ = ["compile_validator", "format_violations", "validate"]
