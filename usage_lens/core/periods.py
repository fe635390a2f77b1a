"""
Period windows, granularity selection and comparison windows.

Pure functions over calendar dates. Callers pass "today" explicitly so that
results are deterministic under a fixed clock. Weeks start on Sunday.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union


class Period(Enum):
    """Named relative time windows a caller can request."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class Granularity(Enum):
    """Bucket sizes used to represent a period."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Longest "all" history still drawn day by day
MAX_DAILY_RANGE_DAYS = 365


@dataclass(frozen=True)
class DateWindow:
    """Local calendar window; ``start`` inclusive, ``end`` exclusive."""
    start: date
    end: date
    label: str

    def __post_init__(self):
        """Validate the window is not inverted."""
        if self.start > self.end:
            raise ValueError("window start must not be after window end")

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def parse_period(value: Union[str, Period]) -> Period:
    """Normalise a period name.

    Raises:
        ValueError: If the name is not a known period
    """
    if isinstance(value, Period):
        return value
    try:
        return Period(str(value).strip().lower())
    except ValueError:
        valid = [p.value for p in Period]
        raise ValueError(f"Unknown period {value!r}; expected one of: {valid}")


def _as_date(now: Union[date, datetime]) -> date:
    return now.date() if isinstance(now, datetime) else now


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def period_window(period: Union[str, Period], today: Union[date, datetime]) -> Optional[DateWindow]:
    """Local date window covered by a period, ending today.

    Returns None for ``all``, which has no lower bound.
    """
    period = parse_period(period)
    today = _as_date(today)
    tomorrow = today + timedelta(days=1)

    if period is Period.TODAY:
        return DateWindow(today, tomorrow, "today")
    if period is Period.WEEK:
        return DateWindow(week_start(today), tomorrow, "this week")
    if period is Period.MONTH:
        return DateWindow(today.replace(day=1), tomorrow, "this month")
    if period is Period.YEAR:
        return DateWindow(date(today.year, 1, 1), tomorrow, "this year")
    return None


def comparison_window(period: Union[str, Period], now: Union[date, datetime]) -> Optional[DateWindow]:
    """Window of the period preceding the requested one.

    ``today`` compares with yesterday, ``week`` with the previous Sunday to
    Saturday week, ``month`` with the previous calendar month, and ``year``
    and ``all`` with the previous calendar year.

    Args:
        period: Requested period
        now: Current local date (or datetime)

    Returns:
        The comparison window, or None when the period has no predecessor.
        None means "no comparison available", never zero usage.
    """
    try:
        period = parse_period(period)
    except ValueError:
        return None
    today = _as_date(now)

    if period is Period.TODAY:
        yesterday = today - timedelta(days=1)
        return DateWindow(yesterday, today, "yesterday")
    if period is Period.WEEK:
        this_week = week_start(today)
        return DateWindow(this_week - timedelta(days=7), this_week, "last week")
    if period is Period.MONTH:
        this_month = today.replace(day=1)
        return DateWindow(_add_months(this_month, -1), this_month, "last month")
    if period in (Period.YEAR, Period.ALL):
        return DateWindow(date(today.year - 1, 1, 1), date(today.year, 1, 1), "last year")
    return None


def select_granularity(period: Union[str, Period], data_range_days: int = 0) -> Granularity:
    """Choose the bucket size for a period.

    ``today`` is hourly, ``week`` and ``month`` daily, ``year`` monthly. For
    ``all`` the choice follows the data: histories of up to 365 distinct
    days stay daily, longer ones switch to monthly.

    Args:
        period: Requested period
        data_range_days: Number of distinct local days carrying data

    Returns:
        HOURLY, DAILY or MONTHLY
    """
    period = parse_period(period)
    if period is Period.TODAY:
        return Granularity.HOURLY
    if period in (Period.WEEK, Period.MONTH):
        return Granularity.DAILY
    if period is Period.YEAR:
        return Granularity.MONTHLY
    if data_range_days <= MAX_DAILY_RANGE_DAYS:
        return Granularity.DAILY
    return Granularity.MONTHLY


SlotFn = Callable[[date, int], int]

_WEEKDAY_LABELS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def comparison_slots(granularity: Granularity, period: Union[str, Period]) -> Tuple[List[str], SlotFn]:
    """Slots used to line up a period against its predecessor.

    Hourly periods compare hour by hour, ``week`` weekday by weekday, other
    daily periods day-of-month by day-of-month, and monthly periods month by
    month.

    Returns:
        Tuple of (slot labels, function mapping a local date and hour to a slot)
    """
    period = parse_period(period)
    if granularity is Granularity.HOURLY:
        return [f"{h}:00" for h in range(24)], lambda day, hour: hour
    if granularity is Granularity.MONTHLY:
        return list(calendar.month_abbr)[1:], lambda day, hour: day.month - 1
    if period is Period.WEEK:
        return list(_WEEKDAY_LABELS), lambda day, hour: (day.weekday() + 1) % 7
    return [str(d) for d in range(1, 32)], lambda day, hour: day.day - 1


def bucket_label(granularity: Granularity, key: Union[int, str]) -> str:
    """Display label for a bucket key."""
    if granularity is Granularity.HOURLY:
        return f"{key}:00"
    if granularity is Granularity.MONTHLY:
        return str(key).replace("-", "/")
    return str(key)
