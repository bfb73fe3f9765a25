"""Clock abstraction used for all delay arithmetic.

All timestamps are **naive UTC** to match the ``TIMESTAMP WITHOUT TIME ZONE``
columns the executions are stored in. Tests use ``FrozenClock`` to simulate
elapsed days without waiting.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time, naive UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or SystemClock().now()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **kwargs) -> datetime:
        """Move forward by a ``timedelta(**kwargs)`` and return the new time."""
        self._now = self._now + timedelta(**kwargs)
        return self._now


_clock: Optional[Clock] = None


def get_clock() -> Clock:
    """Get the process-wide clock (system time unless replaced)."""
    global _clock
    if _clock is None:
        _clock = SystemClock()
    return _clock
