from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
import json
import os

import yaml

from .errors import ConfigurationError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer (got {raw!r})") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number (got {raw!r})") from exc


@dataclass(frozen=True)
class RuntimeSettings:
    # Validator cache
    max_cache_size: int = field(default_factory=lambda: _env_int("GRADEGUARD_MAX_CACHE_SIZE", 50))
    cache_ttl_ms: int = field(default_factory=lambda: _env_int("GRADEGUARD_CACHE_TTL_MS", 60 * 60 * 1000))
    # Recovery
    max_recovery_attempts: int = field(default_factory=lambda: _env_int("GRADEGUARD_MAX_RECOVERY_ATTEMPTS", 3))
    # Batch facade
    default_concurrency: int = field(default_factory=lambda: _env_int("GRADEGUARD_CONCURRENCY", 5))
    # Optimizer
    sample_capacity: int = field(default_factory=lambda: _env_int("GRADEGUARD_SAMPLE_CAPACITY", 1000))
    recommend_window: int = field(default_factory=lambda: _env_int("GRADEGUARD_RECOMMEND_WINDOW", 100))
    default_batch_size: int = field(default_factory=lambda: _env_int("GRADEGUARD_DEFAULT_BATCH_SIZE", 10))
    slow_validation_ms: float = field(default_factory=lambda: _env_float("GRADEGUARD_SLOW_VALIDATION_MS", 100.0))
    high_overhead_pct: float = field(default_factory=lambda: _env_float("GRADEGUARD_HIGH_OVERHEAD_PCT", 15.0))
    low_hit_rate_pct: float = field(default_factory=lambda: _env_float("GRADEGUARD_LOW_HIT_RATE_PCT", 70.0))
    large_batch_size: int = field(default_factory=lambda: _env_int("GRADEGUARD_LARGE_BATCH_SIZE", 20))
    small_batch_size: int = field(default_factory=lambda: _env_int("GRADEGUARD_SMALL_BATCH_SIZE", 5))

    def __post_init__(self) -> None:
        positive = (
            "max_cache_size",
            "cache_ttl_ms",
            "max_recovery_attempts",
            "default_concurrency",
            "sample_capacity",
            "recommend_window",
            "default_batch_size",
        )
        for name in positive:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer (got {value!r})")
        for name in ("slow_validation_ms", "high_overhead_pct", "low_hit_rate_pct"):
            if float(getattr(self, name)) < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        if self.small_batch_size > self.large_batch_size:
            raise ConfigurationError("small_batch_size must be <= large_batch_size")

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_ms / 1000.0


def load_runtime_settings(path: str | Path | None = None, **overrides: Any) -> RuntimeSettings:
    """Return settings from env defaults, then an optional YAML/JSON file, then overrides."""
    settings = RuntimeSettings()
    data: Dict[str, Any] = {}
    if path is not None:
        data.update(_read_settings_file(Path(path)))
    data.update({k: v for k, v in overrides.items() if v is not None})
    if not data:
        return settings
    known = {f.name for f in fields(RuntimeSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")
    return replace(settings, **data)


def _read_settings_file(p: Path) -> Dict[str, Any]:
    text = p.read_text()
    raw: Optional[Any] = yaml.safe_load(text) if p.suffix in {".yaml", ".yml"} else json.loads(text)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Settings file {p} must contain a mapping")
    # Allow a top-level "gradeguard:" section so the file can be shared with other tools
    section = raw.get("gradeguard", raw)
    if not isinstance(section, dict):
        raise ConfigurationError(f"Settings file {p}: 'gradeguard' must be a mapping")
    return dict(section)


__all__ = ["RuntimeSettings", "load_runtime_settings"]
