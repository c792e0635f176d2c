"""Request deadline tracking.

Every sub-step timeout in a request is derived from one ``Budget``. Consumers
call ``remaining()`` or ``slice()`` immediately before starting an awaited
operation and never hold on to a value across an ``await``.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from knowledgeoracle.config import BudgetConfig

Clock = Callable[[], float]


class Budget:
    """Monotonically shrinking time budget for a single request."""

    def __init__(self, deadline_at: float, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._deadline_at = deadline_at
        self._started_at = clock()
        self._last_remaining = max(0.0, deadline_at - self._started_at)

    @classmethod
    def from_limit(
        cls,
        hard_limit_seconds: float,
        safety_margin_seconds: float = 0.0,
        clock: Clock = time.monotonic,
    ) -> Budget:
        """Start a budget that ends ``safety_margin_seconds`` before the hard limit."""
        usable = max(0.0, hard_limit_seconds - safety_margin_seconds)
        return cls(clock() + usable, clock=clock)

    @classmethod
    def from_config(cls, config: BudgetConfig, clock: Clock = time.monotonic) -> Budget:
        return cls.from_limit(config.hard_limit_seconds, config.safety_margin_seconds, clock)

    @property
    def deadline_at(self) -> float:
        return self._deadline_at

    def remaining(self) -> float:
        """Seconds left until the deadline. Never negative, never increases."""
        value = max(0.0, self._deadline_at - self._clock())
        if value > self._last_remaining:
            value = self._last_remaining
        self._last_remaining = value
        return value

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._started_at)

    @property
    def exhausted(self) -> bool:
        return self.remaining() <= 0.0

    def slice(self, cap: float, reserve: float = 0.0) -> float:
        """Timeout for the next call: ``min(cap, remaining - reserve)``, clamped at zero."""
        return max(0.0, min(cap, self.remaining() - reserve))

    def can_afford(self, minimum: float, reserve: float = 0.0) -> bool:
        """True when at least ``minimum`` seconds are left after ``reserve``."""
        return self.remaining() - reserve >= minimum and self.remaining() > 0.0

    def child(self, cap: float, reserve: float = 0.0) -> Budget:
        """Budget for one stage: ends at ``now + cap`` or ``deadline - reserve``, whichever is first."""
        now = self._clock()
        deadline = min(now + max(0.0, cap), self._deadline_at - reserve)
        return Budget(max(now, deadline), clock=self._clock)

    def __repr__(self) -> str:
        return f"Budget(remaining={self.remaining():.3f}s)"
