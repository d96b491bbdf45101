"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that the validator, executor
    and scheduler never call ``datetime.now()`` directly.  Scheduler ticks
    are driven by this clock, which makes due-time selection testable with
    synthetic time.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Invariants enforced:
    - All clocks return timezone-aware UTC instants.  Timestamps are stored
      and compared in that single canonical representation; timezone
      display belongs to callers.

Failure modes:
    - DeterministicClock raises ValueError when given a naive datetime.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def ensure_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to UTC; reject naive values."""
    if value.tzinfo is None:
        raise ValueError(f"naive datetime not allowed: {value.isoformat()}")
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance
        via constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until ``advance()``
          or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = ensure_utc(
            fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = ensure_utc(time)
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
