"""Calendar helpers for RuleTrack.

All "today" comparisons go through a single reference timezone so that a
day's status does not depend on the device clock's zone. Everything else
here is pure calendar arithmetic on ``datetime.date``.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping
from zoneinfo import ZoneInfo


WEEKDAY_LABELS = ["M", "T", "W", "T", "F", "S", "S"]
WEEKDAY_LABELS_NO_WEEKEND = ["M", "T", "W", "T", "F"]


def now(tz: ZoneInfo) -> datetime:
    """Current aware datetime in the reference timezone."""
    return datetime.now(tz)


def today(tz: ZoneInfo) -> date:
    """Current calendar date in the reference timezone."""
    return now(tz).date()


def format_date(d: date) -> str:
    return d.isoformat()


def parse_date(s: str) -> date:
    return date.fromisoformat(s)


def format_month_year(d: date) -> str:
    return d.strftime("%B %Y")


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def is_past(d: date, today: date) -> bool:
    return d < today


def is_today(d: date, today: date) -> bool:
    return d == today


def start_of_month(d: date) -> date:
    return d.replace(day=1)


def end_of_month(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_in_range(start: date, end: date) -> list[date]:
    """Every calendar date from start to end inclusive."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def weekdays_in_range(start: date, end: date) -> list[date]:
    """Monday-Friday dates from start to end inclusive, in order."""
    return [d for d in days_in_range(start, end) if not is_weekend(d)]


def all_days_in_month(month: date) -> list[date]:
    return days_in_range(start_of_month(month), end_of_month(month))


def weekdays_in_month(month: date) -> list[date]:
    return weekdays_in_range(start_of_month(month), end_of_month(month))


def month_grid(month: date) -> list[date | None]:
    """Monday-first 7-column layout of a month.

    Leading ``None`` cells push day 1 under its weekday column; the list is not
    padded at the end.
    """
    first = start_of_month(month)
    cells: list[date | None] = [None] * first.weekday()
    cells.extend(all_days_in_month(month))
    return cells


def month_grid_rows(month: date) -> list[list[date | None]]:
    """``month_grid`` split into rows of 7, last row padded with ``None``."""
    cells = month_grid(month)
    if len(cells) % 7:
        cells.extend([None] * (7 - len(cells) % 7))
    return [cells[i:i + 7] for i in range(0, len(cells), 7)]


def week_start(d: date) -> date:
    """Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def group_by_week(days: Iterable[date]) -> list[list[date]]:
    """Group ordered dates into Monday-aligned weeks."""
    weeks: list[list[date]] = []
    current: date | None = None
    for d in days:
        monday = week_start(d)
        if monday != current:
            weeks.append([])
            current = monday
        weeks[-1].append(d)
    return weeks


def first_tracking_day(logs: Mapping[str, object]) -> date | None:
    """Earliest logged date, or None when nothing has been logged."""
    if not logs:
        return None
    return parse_date(min(logs))
