"""
Aggregation of chat session records for the analytics view.

Pure data transformation: nothing here touches storage. All calendar
arithmetic happens in one timezone (the configured analytics timezone),
which is also what "today" means for range validation.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from src.chat_sessions import ChatSession

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════

class InvalidRangeError(ValueError):
    """Date filter is in the future or narrower than the minimum window."""
    pass


# ═══════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════

class TimeRange(str, Enum):
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


MIN_WINDOW_DAYS = 7

DAYS_OF_WEEK = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

_LABEL_FORMATS = {
    TimeRange.YEAR: "%Y",
    TimeRange.MONTH: "%b %Y",
    TimeRange.DAY: "%d %b %Y",
    TimeRange.HOUR: "%H:%M %d %b %Y",
}


@dataclass
class Bucket:
    label: str
    count: int


@dataclass
class AnalyticsReport:
    """Everything the analytics view charts for one filter window."""
    range: TimeRange
    start: date
    end: date
    total: int
    timeline: list[Bucket] = field(default_factory=list)
    by_type: dict[str, int] = field(default_factory=dict)
    by_hour: list[Bucket] = field(default_factory=list)
    by_weekday: list[Bucket] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════
# RANGE HANDLING
# ═══════════════════════════════════════════════════════════════════════════

def _tz(tz: Optional[tzinfo]) -> tzinfo:
    return tz or ZoneInfo("UTC")


def _today(tz: tzinfo, now: Optional[datetime]) -> date:
    now = now or datetime.now(tz)
    if now.tzinfo is not None:
        now = now.astimezone(tz)
    return now.date()


def validate_range(start: date, end: date, tz: Optional[tzinfo] = None, now: Optional[datetime] = None) -> None:
    """
    Reject filter windows the analytics view cannot show.

    Raises:
        InvalidRangeError: If either bound is after today, or the window
            spans fewer than seven days
    """
    today = _today(_tz(tz), now)
    if start > today or end > today:
        raise InvalidRangeError("Cannot select future dates")
    if (end - start).days < MIN_WINDOW_DAYS:
        raise InvalidRangeError("Date range must be at least 1 week")


def default_window(time_range: TimeRange, tz: Optional[tzinfo] = None, now: Optional[datetime] = None) -> tuple[date, date]:
    """Window preselected when the view switches to `time_range`."""
    today = _today(_tz(tz), now)
    time_range = TimeRange(time_range)
    if time_range == TimeRange.YEAR:
        start = _shift_months(today, -12)
    elif time_range == TimeRange.MONTH:
        start = _shift_months(today, -1)
    else:
        start = today - timedelta(weeks=1)
    return start, today


def _shift_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    # Clamp to the last day of the target month.
    next_month = date(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(day.day, last_day))


def filter_by_range(
    sessions: Iterable[ChatSession],
    start: date,
    end: date,
    tz: Optional[tzinfo] = None,
) -> list[ChatSession]:
    """Records from the start of `start` through the last instant of `end`, inclusive."""
    tz = _tz(tz)
    lower = datetime.combine(start, time.min, tzinfo=tz)
    upper = datetime.combine(end, time.max, tzinfo=tz)
    return [s for s in sessions if lower <= s.created_at <= upper]


# ═══════════════════════════════════════════════════════════════════════════
# BUCKETING
# ═══════════════════════════════════════════════════════════════════════════

def _period_start(moment: datetime, time_range: TimeRange) -> datetime:
    if time_range == TimeRange.YEAR:
        return moment.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    if time_range == TimeRange.MONTH:
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if time_range == TimeRange.DAY:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return moment.replace(minute=0, second=0, microsecond=0)


def _calendar_periods(start: date, end: date, time_range: TimeRange, tz: tzinfo) -> list[datetime]:
    """Every month or year touching [start, end]."""
    if time_range == TimeRange.YEAR:
        return [datetime(year, 1, 1, tzinfo=tz) for year in range(start.year, end.year + 1)]

    periods = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        periods.append(datetime(year, month, 1, tzinfo=tz))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return periods


def bucket(
    sessions: Iterable[ChatSession],
    time_range: TimeRange,
    start: date,
    end: date,
    tz: Optional[tzinfo] = None,
) -> list[Bucket]:
    """
    Count records per calendar period of `time_range`, chronologically.

    Month and year views list every period in the window, zero-filled.
    Day and hour views list only periods with at least one record.
    """
    tz = _tz(tz)
    time_range = TimeRange(time_range)
    counts: dict[datetime, int] = {}

    for session in filter_by_range(sessions, start, end, tz):
        key = _period_start(session.created_at.astimezone(tz), time_range)
        counts[key] = counts.get(key, 0) + 1

    if time_range in (TimeRange.MONTH, TimeRange.YEAR):
        for period in _calendar_periods(start, end, time_range, tz):
            counts.setdefault(period, 0)

    fmt = _LABEL_FORMATS[time_range]
    return [Bucket(label=period.strftime(fmt), count=counts[period]) for period in sorted(counts)]


def hourly_distribution(sessions: Iterable[ChatSession], tz: Optional[tzinfo] = None) -> list[Bucket]:
    """Records per hour of day; always 24 entries, '0:00' through '23:00'."""
    tz = _tz(tz)
    counts = [0] * 24
    for session in sessions:
        counts[session.created_at.astimezone(tz).hour] += 1
    return [Bucket(label=f"{hour}:00", count=count) for hour, count in enumerate(counts)]


def weekday_distribution(sessions: Iterable[ChatSession], tz: Optional[tzinfo] = None) -> list[Bucket]:
    """Records per day of week; always 7 entries, Sunday first."""
    tz = _tz(tz)
    counts = [0] * 7
    for session in sessions:
        # isoweekday: Monday=1 .. Sunday=7
        counts[session.created_at.astimezone(tz).isoweekday() % 7] += 1
    return [Bucket(label=day, count=count) for day, count in zip(DAYS_OF_WEEK, counts)]


def type_distribution(sessions: Iterable[ChatSession]) -> dict[str, int]:
    """Records per message type, in order of first appearance."""
    counts: dict[str, int] = {}
    for session in sessions:
        counts[session.message.type] = counts.get(session.message.type, 0) + 1
    return counts


# ═══════════════════════════════════════════════════════════════════════════
# REPORT
# ═══════════════════════════════════════════════════════════════════════════

def build_report(
    sessions: Iterable[ChatSession],
    time_range: TimeRange,
    start: date,
    end: date,
    tz: Optional[tzinfo] = None,
    now: Optional[datetime] = None,
) -> AnalyticsReport:
    """Validate the window, filter once and compute every chart series."""
    tz = _tz(tz)
    time_range = TimeRange(time_range)
    validate_range(start, end, tz, now)

    filtered = filter_by_range(sessions, start, end, tz)
    logger.debug(f"Analytics window {start}..{end} ({time_range.value}): {len(filtered)} records")

    return AnalyticsReport(
        range=time_range,
        start=start,
        end=end,
        total=len(filtered),
        timeline=bucket(filtered, time_range, start, end, tz),
        by_type=type_distribution(filtered),
        by_hour=hourly_distribution(filtered, tz),
        by_weekday=weekday_distribution(filtered, tz),
    )
