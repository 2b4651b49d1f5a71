"""
Authoritative clock and quota window boundaries.

All quota decisions derive time from a ClockSource owned by the server
process. No function here accepts a caller-supplied "now".
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class WindowKind(Enum):
    """Quota accounting windows."""
    DAILY = "daily"
    MONTHLY = "monthly"


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def window_start(moment: datetime, window: WindowKind) -> datetime:
    """Return the UTC instant at which the window containing ``moment`` began."""
    day = _start_of_day(moment.astimezone(timezone.utc))
    if window is WindowKind.DAILY:
        return day
    return day.replace(day=1)


def window_end(moment: datetime, window: WindowKind) -> datetime:
    """Return the UTC instant at which the window containing ``moment`` resets.

    Daily windows end at the next UTC midnight; monthly windows end at the
    first UTC midnight of the following calendar month.
    """
    start = window_start(moment, window)
    if window is WindowKind.DAILY:
        return start + timedelta(days=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


@dataclass(frozen=True)
class ServerTime:
    """Snapshot of server time for reset countdown displays."""
    current_utc: datetime
    next_reset_utc: datetime
    seconds_until_reset: int
    current_date_utc: date

    @property
    def hours(self) -> int:
        return self.seconds_until_reset // 3600

    @property
    def minutes(self) -> int:
        return (self.seconds_until_reset % 3600) // 60

    @property
    def seconds(self) -> int:
        return self.seconds_until_reset % 60

    def to_dict(self) -> dict:
        return {
            "current_utc_time": self.current_utc.isoformat(),
            "next_reset_utc": self.next_reset_utc.isoformat(),
            "time_until_reset_ms": self.seconds_until_reset * 1000,
            "time_until_reset": {
                "hours": self.hours,
                "minutes": self.minutes,
                "seconds": self.seconds,
            },
            "current_date_utc": self.current_date_utc.isoformat(),
        }


class ClockSource:
    """Base clock. Subclasses only provide ``now``."""

    def now(self) -> datetime:
        raise NotImplementedError

    def window_start(self, window: WindowKind) -> datetime:
        return window_start(self.now(), window)

    def next_reset_boundary(self, window: WindowKind) -> datetime:
        """Next instant at which ``window`` resets, strictly after ``now()``."""
        return window_end(self.now(), window)

    def server_time(self) -> ServerTime:
        """Current time and the next daily reset."""
        now = self.now()
        next_reset = window_end(now, WindowKind.DAILY)
        remaining = int((next_reset - now).total_seconds())
        return ServerTime(
            current_utc=now,
            next_reset_utc=next_reset,
            seconds_until_reset=remaining,
            current_date_utc=now.date(),
        )


class SystemClock(ClockSource):
    """Host wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(ClockSource):
    """Manually driven clock for tests and replays."""

    def __init__(self, moment: Optional[datetime] = None):
        self._moment = _as_utc(moment or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = _as_utc(moment)

    def advance(self, delta: timedelta) -> None:
        self._moment = self._moment + delta


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
