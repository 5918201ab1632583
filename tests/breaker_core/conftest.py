from __future__ import annotations

import pytest

from tests.breaker_core.support.breaker_fakes import FakeClock, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a fresh manually advanced clock per test."""
    return FakeClock()
