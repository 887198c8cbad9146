"""
Injectable time sources.

The controller and the validator take a clock instead of calling
``datetime.now`` so tests can pin "now" and move it explicitly:

    clock = FixedClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
    controller = ConcurrencyController(clock=clock)
    clock.advance(timedelta(days=1))

All clocks return timezone-aware UTC datetimes.
"""

from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return "<SystemClock>"


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def advance(self, delta: timedelta) -> datetime:
        self._instant += delta
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant.astimezone(timezone.utc)

    def __repr__(self) -> str:
        return f"<FixedClock {self._instant.isoformat()}>"


_default_clock = SystemClock()


def default_clock():
    """Clock used by services constructed without an explicit one."""
    return _default_clock


def install_clock(clock):
    """Replace the default clock; returns the previous one for restoring."""
    global _default_clock
    previous = _default_clock
    _default_clock = clock
    return previous
