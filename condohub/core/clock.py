"""
Clock abstraction used for due-date comparisons and job scheduling.
"""
from datetime import datetime, date, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Wall clock in the condominium's local timezone"""

    def __init__(self, tz_name: str = "UTC"):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock frozen at a given moment; tests move it with advance()"""

    def __init__(self, moment: datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self.moment = moment
        self.tz = moment.tzinfo

    def now(self) -> datetime:
        return self.moment

    def today(self) -> date:
        return self.moment.date()

    def advance(self, **kwargs) -> datetime:
        self.moment = self.moment + timedelta(**kwargs)
        return self.moment


def default_clock() -> Clock:
    from condohub.core.config import settings
    return SystemClock(settings.TIMEZONE)


def to_naive(moment: datetime) -> datetime:
    """Naive UTC, the form stored in DateTime columns (see datetime.utcnow defaults)"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def get_clock() -> Clock:
    """Dependency that provides the request's clock"""
    return default_clock()
