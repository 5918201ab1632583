"""Clock sources for breaker timers."""

import time
from typing import Protocol


class Clock(Protocol):
    """Time source used for probe and cooldown deadlines."""

    def now(self) -> float:
        """Return the current reading in seconds."""


class MonotonicClock:
    """Clock backed by ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()
