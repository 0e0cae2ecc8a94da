from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .types import RecoverySession


class GradeGuardError(Exception):
    """Base class for every error raised by the validation core."""


class MalformedJsonError(GradeGuardError):
    """Payload text does not parse as JSON. Recovered locally, never surfaced."""


class SchemaViolationError(GradeGuardError):
    """Payload parses but fails the schema. Recovered locally, never surfaced."""

    def __init__(self, message: str, violations: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.violations: List[str] = list(violations)


class RecoveryExhaustedError(GradeGuardError):
    """Every recovery strategy failed to produce an acceptable value.

    Carries the finalized recovery session and the full chain of intermediate
    violations so callers can diagnose what the model actually emitted.
    """

    def __init__(
        self,
        message: str,
        *,
        session: Optional["RecoverySession"] = None,
        violations: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.session = session
        self.violations: List[str] = list(violations)


class ConfigurationError(GradeGuardError, ValueError):
    """A tunable was given a value the core cannot run with."""


__all__ = [
    "GradeGuardError",
    "MalformedJsonError",
    "SchemaViolationError",
    "RecoveryExhaustedError",
    "ConfigurationError",
]
