from __future__ import annotations

import os
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gradeguard.config import RuntimeSettings  # noqa: E402
from gradeguard.enhanced import EnhancedValidator  # noqa: E402
from gradeguard.telemetry import InMemoryMetricsSink  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch) -> None:
    """Keep a developer's GRADEGUARD_* variables out of the defaults under test."""
    for key in list(os.environ):
        if key.startswith("GRADEGUARD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings()


@pytest.fixture
def sink() -> InMemoryMetricsSink:
    return InMemoryMetricsSink()


@pytest.fixture
def validator(settings: RuntimeSettings, sink: InMemoryMetricsSink) -> EnhancedValidator:
    return EnhancedValidator(settings, sink=sink)


class FakeClock:
    """Manually advanced clock for TTL and LRU tests."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
