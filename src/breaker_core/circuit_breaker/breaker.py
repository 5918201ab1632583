"""Core circuit breaker implementation."""

import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, ParamSpec, TypeVar

import structlog

from breaker_core.circuit_breaker.clock import Clock, MonotonicClock
from breaker_core.circuit_breaker.exceptions import (
    CircuitBreakerConfigError,
    CircuitOpenError,
)
from breaker_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from breaker_core.logging import StructuredLogger, log_info, log_warning

T = TypeVar("T")
P = ParamSpec("P")

EVENT_STATE_CHANGE = "circuit_breaker.state_change"
EVENT_WINDOW_REARMED = "circuit_breaker.window_rearmed"
EVENT_CALL_REJECTED = "circuit_breaker.call_rejected"


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        probe_timeout_ms: Length of one ``HALF_OPEN`` evaluation window.
        cooldown_ms: Time spent ``OPEN`` before a probe is admitted.
        failure_count_threshold: Failures in a window before the rate is judged.
        failure_rate_threshold: Failure percentage in a window that trips the
            breaker once the count threshold is reached.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    probe_timeout_ms: int = 5000
    cooldown_ms: int = 5000
    failure_count_threshold: int = 10
    failure_rate_threshold: float = 50.0
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        for field_name in (
            "probe_timeout_ms",
            "cooldown_ms",
            "failure_count_threshold",
        ):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise CircuitBreakerConfigError(f"{field_name} must be an integer")
        rate = self.failure_rate_threshold
        if isinstance(rate, bool) or not isinstance(rate, int | float):
            raise CircuitBreakerConfigError("failure_rate_threshold must be a number")
        if self.probe_timeout_ms < 0:
            raise CircuitBreakerConfigError("probe_timeout_ms must be >= 0")
        if self.cooldown_ms < 0:
            raise CircuitBreakerConfigError("cooldown_ms must be >= 0")
        if self.failure_count_threshold < 1:
            raise CircuitBreakerConfigError("failure_count_threshold must be >= 1")
        if not 0 <= self.failure_rate_threshold <= 100:
            raise CircuitBreakerConfigError(
                "failure_rate_threshold must be between 0 and 100"
            )

    @property
    def probe_timeout(self) -> float:
        """Probe window length in seconds."""
        return self.probe_timeout_ms / 1000

    @property
    def cooldown(self) -> float:
        """Cooldown length in seconds."""
        return self.cooldown_ms / 1000


@dataclass(slots=True)
class _BreakerCell:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    probe_deadline: float | None = None
    cooldown_deadline: float | None = None
    total_successes: int = 0
    total_failures: int = 0


@dataclass(frozen=True, slots=True)
class _Transition:
    old: CircuitState
    new: CircuitState
    reason: str
    failure_count: int
    success_count: int
    failure_rate: float | None = None


class CircuitBreaker(Generic[P, T]):
    """Stateful proxy around one dangerous async operation.

    All mutable state lives in one cell guarded by a thread lock. The lock is
    held only while deciding admission and while recording an outcome, never
    across the awaited operation.
    """

    def __init__(
        self,
        operation: Callable[P, Awaitable[T]],
        *,
        name: str = "default",
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a circuit breaker around ``operation``.

        Args:
            operation: Async callable guarded by this breaker.
            name: Breaker name used in errors and log events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            clock: Time source for deadlines. Defaults to ``MonotonicClock()``.
            logger: Structured logger for transition events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._operation = operation
        self._clock: Clock = MonotonicClock() if clock is None else clock
        self._logger: StructuredLogger = (
            structlog.get_logger(__name__) if logger is None else logger
        )
        self._cell = _BreakerCell()
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current breaker state."""
        return self.get_state()

    def get_state(self) -> CircuitState:
        """Return the current state without evaluating any timer."""
        with self._lock:
            return self._cell.state

    def snapshot(self) -> BreakerSnapshot:
        """Return a read-only copy of counters and deadlines."""
        with self._lock:
            cell = self._cell
            return BreakerSnapshot(
                name=self.name,
                state=cell.state,
                failure_count=cell.failure_count,
                success_count=cell.success_count,
                probe_deadline=cell.probe_deadline,
                cooldown_deadline=cell.cooldown_deadline,
                total_successes=cell.total_successes,
                total_failures=cell.total_failures,
            )

    async def run(self, *args: P.args, **kwargs: P.kwargs) -> T:
        """Invoke the guarded operation under circuit breaker protection.

        Args:
            *args: Positional arguments forwarded to the operation.
            **kwargs: Keyword arguments forwarded to the operation.

        Returns:
            The operation's result when admitted and successful.

        Raises:
            CircuitOpenError: When the circuit is open and cooling down.
            Exception: The original exception from the operation when it is
                admitted and fails.
        """
        self._admit()

        try:
            result = await self._operation(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions:
            self._emit(self._record_failure())
            raise
        except asyncio.CancelledError:
            self._emit(self._record_failure())
            raise

        self._emit(self._record_success())
        return result

    def _admit(self) -> None:
        transition: _Transition | None = None
        retry_after: float | None = None
        with self._lock:
            cell = self._cell
            if cell.state != CircuitState.OPEN:
                return
            now = self._clock.now()
            deadline = cell.cooldown_deadline
            if deadline is not None and now < deadline:
                retry_after = deadline - now
            else:
                self._arm_window(now, failure_count=0)
                cell.cooldown_deadline = None
                cell.state = CircuitState.HALF_OPEN
                transition = _Transition(
                    old=CircuitState.OPEN,
                    new=CircuitState.HALF_OPEN,
                    reason="cooldown_elapsed",
                    failure_count=0,
                    success_count=0,
                )

        if retry_after is not None:
            self._log(
                log_warning,
                EVENT_CALL_REJECTED,
                breaker=self.name,
                retry_after=retry_after,
            )
            raise CircuitOpenError(self.name, retry_after=retry_after)
        self._emit(transition)

    def _arm_window(self, now: float, *, failure_count: int = 1) -> None:
        cell = self._cell
        cell.failure_count = failure_count
        cell.success_count = 0
        cell.probe_deadline = now + self.config.probe_timeout

    def _record_success(self) -> _Transition | None:
        with self._lock:
            cell = self._cell
            cell.total_successes += 1
            if cell.state != CircuitState.HALF_OPEN:
                return None

            cell.success_count += 1
            now = self._clock.now()
            if cell.probe_deadline is not None and now < cell.probe_deadline:
                return None

            transition = _Transition(
                old=CircuitState.HALF_OPEN,
                new=CircuitState.CLOSED,
                reason="probe_window_passed",
                failure_count=cell.failure_count,
                success_count=cell.success_count,
            )
            cell.failure_count = 0
            cell.success_count = 0
            cell.probe_deadline = None
            cell.state = CircuitState.CLOSED
            return transition

    def _record_failure(self) -> _Transition | None:
        with self._lock:
            cell = self._cell
            cell.total_failures += 1
            now = self._clock.now()

            if cell.state == CircuitState.CLOSED:
                self._arm_window(now)
                cell.state = CircuitState.HALF_OPEN
                return _Transition(
                    old=CircuitState.CLOSED,
                    new=CircuitState.HALF_OPEN,
                    reason="failure_detected",
                    failure_count=1,
                    success_count=0,
                )

            # Admitted before the trip; the trip decision stands.
            if cell.state == CircuitState.OPEN:
                return None

            if cell.probe_deadline is None or now > cell.probe_deadline:
                transition = _Transition(
                    old=CircuitState.HALF_OPEN,
                    new=CircuitState.HALF_OPEN,
                    reason="probe_window_expired",
                    failure_count=cell.failure_count,
                    success_count=cell.success_count,
                )
                self._arm_window(now)
                return transition

            cell.failure_count += 1
            if cell.failure_count < self.config.failure_count_threshold:
                return None

            failure_count = cell.failure_count
            success_count = cell.success_count
            failure_rate = failure_count * 100 / (failure_count + success_count)
            if failure_rate >= self.config.failure_rate_threshold:
                cell.failure_count = 0
                cell.success_count = 0
                cell.probe_deadline = None
                cell.cooldown_deadline = now + self.config.cooldown
                cell.state = CircuitState.OPEN
                return _Transition(
                    old=CircuitState.HALF_OPEN,
                    new=CircuitState.OPEN,
                    reason="failure_rate_exceeded",
                    failure_count=failure_count,
                    success_count=success_count,
                    failure_rate=failure_rate,
                )

            self._arm_window(now)
            return _Transition(
                old=CircuitState.HALF_OPEN,
                new=CircuitState.HALF_OPEN,
                reason="failure_rate_below_threshold",
                failure_count=failure_count,
                success_count=success_count,
                failure_rate=failure_rate,
            )

    def _emit(self, transition: _Transition | None) -> None:
        if transition is None:
            return
        event = (
            EVENT_WINDOW_REARMED
            if transition.old == transition.new
            else EVENT_STATE_CHANGE
        )
        self._log(
            log_info,
            event,
            breaker=self.name,
            old=str(transition.old),
            new=str(transition.new),
            reason=transition.reason,
            failure_count=transition.failure_count,
            success_count=transition.success_count,
            failure_rate=transition.failure_rate,
        )

    def _log(
        self,
        log_fn: Callable[..., None],
        event: str,
        **fields: object,
    ) -> None:
        try:
            log_fn(self._logger, event, **fields)
        except Exception:
            return
