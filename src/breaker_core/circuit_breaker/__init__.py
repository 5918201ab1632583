"""Framework-agnostic async circuit breaker.

This package guards one async operation with a three-state breaker.

Key behavior notes:
  - The first failure while ``CLOSED`` opens a ``HALF_OPEN`` evaluation window
    instead of tripping outright. The breaker trips to ``OPEN`` only once a
    window has collected ``failure_count_threshold`` failures and their share
    of recorded outcomes reaches ``failure_rate_threshold`` percent.
  - A window that expires is re-armed by the next failure and closed by the
    next success.
  - While ``OPEN`` calls are rejected with ``CircuitOpenError`` until the
    cooldown elapses. The first call after that moves the breaker to
    ``HALF_OPEN`` and is admitted as a probe.
  - Timers read an injectable ``Clock``; nothing sleeps or waits on a timer.
"""

from breaker_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from breaker_core.circuit_breaker.clock import Clock, MonotonicClock
from breaker_core.circuit_breaker.exceptions import (
    CircuitBreakerConfigError,
    CircuitBreakerError,
    CircuitOpenError,
)
from breaker_core.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerConfigError",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "Clock",
    "MonotonicClock",
]
