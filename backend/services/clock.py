"""Clock abstraction. Every time comparison in the subscription core goes through one."""
import calendar
from datetime import datetime, timedelta, timezone


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Deterministic clock for tests; advance() moves it forward."""

    def __init__(self, at: datetime):
        self._at = at if at.tzinfo else at.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._at

    def advance(self, **kwargs) -> datetime:
        self._at = self._at + timedelta(**kwargs)
        return self._at


def as_utc(value):
    """Stored datetimes may come back naive from the driver; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_months(start: datetime, months: int) -> datetime:
    """Calendar month addition, clamped to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_years(start: datetime, years: int) -> datetime:
    return add_months(start, 12 * years)


system_clock = SystemClock()
