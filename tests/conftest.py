"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any import that builds settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from admission.adapters.rate_limit.in_memory import InMemoryWindowStore
from admission.adapters.rate_limit.limiter import FixedWindowLimiter
from admission.core import rate_limit as rate_limit_module
from admission.services.ip_blocklist import IPBlocklist
from admission.services.violation_log import ViolationLog


class FakeClock:
    """Deterministic epoch-milliseconds clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryWindowStore:
    return InMemoryWindowStore(grace_ms=1_000)


@pytest.fixture
def limiter(store: InMemoryWindowStore, clock: FakeClock) -> FixedWindowLimiter:
    return FixedWindowLimiter(store, burst_window_ms=100, sweep_interval_ms=None, clock=clock)


@pytest.fixture
def violation_log(clock: FakeClock) -> ViolationLog:
    return ViolationLog(retention_ms=60_000, max_entries=50, clock=clock)


@pytest.fixture
def blocklist(clock: FakeClock) -> IPBlocklist:
    return IPBlocklist(clock=clock)


@pytest.fixture(autouse=True)
def isolated_process_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Give every test fresh process-wide limiter, violation log and blocklist."""
    monkeypatch.setattr(rate_limit_module, "_limiter", None)
    monkeypatch.setattr(rate_limit_module, "_limiter_config", None)
    monkeypatch.setattr(rate_limit_module, "_violation_log", None)
    monkeypatch.setattr(rate_limit_module, "_ip_blocklist", None)
