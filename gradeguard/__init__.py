"""Validation, caching and recovery for LLM grading output."""

from .config import RuntimeSettings, load_runtime_settings
from .enhanced import BatchItem, BatchOptions, EnhancedValidator
from .errors import (
    ConfigurationError,
    GradeGuardError,
    MalformedJsonError,
    RecoveryExhaustedError,
    SchemaViolationError,
)
from .types import (
    BatchResult,
    BatchSummary,
    EnhancedResult,
    OptimizationReport,
    RecordKind,
    ResultMetadata,
    ValidationContext,
)
from .validator import validate

__all__ = [
    "RuntimeSettings",
    "load_runtime_settings",
    "BatchItem",
    "BatchOptions",
    "EnhancedValidator",
    "ConfigurationError",
    "GradeGuardError",
    "MalformedJsonError",
    "RecoveryExhaustedError",
    "SchemaViolationError",
    "BatchResult",
    "BatchSummary",
    "EnhancedResult",
    "OptimizationReport",
    "RecordKind",
    "ResultMetadata",
    "ValidationContext",
    "validate",
]
