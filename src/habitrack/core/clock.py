"""Clock abstraction used to decide what "today" means.

Streak and date validation depend on the current calendar date. Injecting a
clock with an explicit timezone keeps them deterministic and testable.
"""

from datetime import date, datetime, tzinfo
from typing import Protocol

import pytz


class Clock(Protocol):
    """Protocol for objects that report the current date and time."""

    def today(self) -> date:
        """Return the current calendar date."""
        ...

    def now(self) -> datetime:
        """Return the current timezone-aware datetime."""
        ...


def resolve_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name such as ``Europe/Lisbon``.

    Raises:
        pytz.UnknownTimeZoneError: If the name is unknown.
    """
    return pytz.timezone(name)


class ZoneClock:
    """Wall clock pinned to a specific timezone."""

    def __init__(self, timezone: str | tzinfo = pytz.utc) -> None:
        self._tz = resolve_timezone(timezone) if isinstance(timezone, str) else timezone

    @property
    def timezone(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        # datetime.now(tz) goes through tz.fromutc, which pytz zones localize correctly.
        return datetime.now(self._tz)

    def today(self) -> date:
        return self.now().date()

    def __repr__(self) -> str:
        return f"ZoneClock(timezone={self._tz!s})"
