"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock so that the state machine, the timeout
    scheduler and the services never call ``datetime.now()`` directly.
    Step deadlines, outcome timestamps and event times all come from the
    Clock handed to the service.

Architecture position:
    Kernel > Domain -- pure, zero I/O (except SystemClock, the one
    sanctioned I/O boundary for time).

Failure modes:
    - None.  DeterministicClock never raises.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services that need current time receive a Clock via constructor
        injection.

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

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called, which makes timeout tests exact: a step
    with a 2 hour timeout is due after ``advance(hours=2)`` and not one
    second before.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._current = time

    def advance(self, seconds: int = 0, *, hours: float = 0) -> datetime:
        """Advance the clock and return the new time."""
        self._current = self._current + timedelta(seconds=seconds, hours=hours)
        return self._current

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        return self.advance(1)
