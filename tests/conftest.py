"""
Shared pytest fixtures and configuration for phaseloop tests.

This module provides:
- Settings and logging isolation between tests
- A virtual clock + manual poller pair for deterministic loops
- A scheduler factory that closes every loop it created

Usage:
    def test_something(make_loop, clock):
        loop = make_loop(microtask_policy="phase")
        ...
"""

import os
import sys
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
import structlog

# Ensure phaseloop package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from phaseloop.core.settings import reset_settings
from phaseloop.loop import ManualClock, ManualPoller, PhaseScheduler, PhaseTracer


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Strip PHASELOOP_* env vars and drop cached settings around each test."""
    for key in list(os.environ):
        if key.startswith("PHASELOOP_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo any structlog configuration a test (or the CLI) applied."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Loop Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def poller(clock: ManualClock) -> ManualPoller:
    return ManualPoller(clock)


@pytest.fixture
def tracer() -> PhaseTracer:
    return PhaseTracer()


@pytest.fixture
def make_loop(
    clock: ManualClock, poller: ManualPoller
) -> Generator[Callable[..., PhaseScheduler], None, None]:
    """
    Factory for schedulers on the shared virtual clock.

    Slow-callback detection is off unless a test asks for it.
    """
    loops: list[PhaseScheduler] = []

    def factory(**kwargs: Any) -> PhaseScheduler:
        kwargs.setdefault("slow_callback_threshold", 0)
        loop = PhaseScheduler(clock=clock, poller=poller, **kwargs)
        loops.append(loop)
        return loop

    yield factory

    for loop in loops:
        if not loop.is_running:
            loop.close()


@pytest.fixture
def loop(make_loop: Callable[..., PhaseScheduler]) -> PhaseScheduler:
    return make_loop()
