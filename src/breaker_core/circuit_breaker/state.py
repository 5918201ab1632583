"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Failures recorded in the current counting epoch.
        success_count: Successes recorded in the current counting epoch.
        probe_deadline: Clock reading ending the ``HALF_OPEN`` window, if any.
        cooldown_deadline: Clock reading ending the ``OPEN`` cooldown, if any.
        total_successes: Successes recorded since the breaker was created.
        total_failures: Failures recorded since the breaker was created.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    probe_deadline: float | None
    cooldown_deadline: float | None
    total_successes: int = 0
    total_failures: int = 0

    @property
    def failure_rate(self) -> float | None:
        """Failure percentage of the current epoch, or ``None`` when empty."""
        recorded = self.failure_count + self.success_count
        if recorded == 0:
            return None
        return self.failure_count * 100 / recorded
