"""Statistics engine for RuleTrack.

Everything here is a pure function of (logs, today, range): nothing is
cached, so callers can recompute on every read.

Rate = round(100 * green / (green + red)) over weekdays up to today.
Unlogged (grey) days count toward neither side. Streak walks backwards from
the latest weekday <= today: grey is skipped, green counts, and the first
red ends the count for good.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from ruletrack.dates import (
    add_months,
    end_of_month,
    first_tracking_day,
    group_by_week,
    start_of_month,
    weekdays_in_month,
    weekdays_in_range,
)
from ruletrack.models import GREEN, GREY, RED, DayLog, day_status


GOAL_MODES = ("month", "quarter", "year")


@dataclass
class PeriodStats:
    streak: int = 0
    rate: int = 0
    missed: int = 0
    green: int = 0
    red: int = 0
    grey: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "streak": self.streak,
            "rate": self.rate,
            "missed": self.missed,
            "green": self.green,
            "red": self.red,
            "grey": self.grey,
        }


@dataclass
class WeekStats:
    start: date
    days: list[date] = field(default_factory=list)
    green: int = 0
    red: int = 0
    rate: int | None = None  # None until a day of the week is logged

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "days": [d.isoformat() for d in self.days],
            "green": self.green,
            "red": self.red,
            "rate": self.rate,
        }


@dataclass
class GoalDot:
    date: date
    kind: str  # green, red, grey, future, before


@dataclass
class GoalProgress:
    mode: str
    start: date | None = None
    end: date | None = None
    dots: list[GoalDot] = field(default_factory=list)
    green_count: int = 0
    tracked: int = 0
    rate: int = 0
    remaining: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "dots": [{"date": d.date.isoformat(), "kind": d.kind} for d in self.dots],
            "greenCount": self.green_count,
            "tracked": self.tracked,
            "rate": self.rate,
            "remaining": self.remaining,
        }


# ── Core formulas ─────────────────────────────────────────────


def completion_rate(green: int, red: int) -> int:
    """Integer percentage in [0, 100], rounding halves up; 0 with nothing logged."""
    total = green + red
    if total <= 0:
        return 0
    return int(math.floor(100 * green / total + 0.5))


def compute_streak(statuses_newest_first: list[str]) -> int:
    streak = 0
    for status in statuses_newest_first:
        if status == GREEN:
            streak += 1
        elif status == RED:
            break
    return streak


def compute_stats(logs: Mapping[str, DayLog], start: date, end: date, today: date) -> PeriodStats:
    """Streak, rate and missed count over the weekdays of [start, end] up to today."""
    days = [d for d in weekdays_in_range(start, end) if d <= today]
    statuses = [day_status(d, logs, today) for d in days]

    stats = PeriodStats()
    for status in statuses:
        if status == GREEN:
            stats.green += 1
        elif status == RED:
            stats.red += 1
        elif status == GREY:
            stats.grey += 1

    stats.rate = completion_rate(stats.green, stats.red)
    stats.missed = stats.red
    stats.streak = compute_streak(list(reversed(statuses)))
    return stats


def month_stats(logs: Mapping[str, DayLog], month: date, today: date) -> PeriodStats:
    start, end = month_range(month)
    return compute_stats(logs, start, end, today)


def weekly_rates(logs: Mapping[str, DayLog], month: date, today: date) -> list[WeekStats]:
    """Per-week rate for each Monday-aligned week of the month's weekdays."""
    weeks = []
    for days in group_by_week(weekdays_in_month(month)):
        week = WeekStats(start=days[0], days=days)
        for d in days:
            if d > today:
                continue
            status = day_status(d, logs, today)
            if status == GREEN:
                week.green += 1
            elif status == RED:
                week.red += 1
        if week.green + week.red > 0:
            week.rate = completion_rate(week.green, week.red)
        weeks.append(week)
    return weeks


# ── Ranges ────────────────────────────────────────────────────


def month_range(month: date) -> tuple[date, date]:
    return start_of_month(month), end_of_month(month)


def quarter_range(today: date, first_day: date) -> tuple[date, date]:
    """Three months back (never before tracking started) to three months ahead."""
    start = add_months(today, -3)
    if first_day > start:
        start = first_day
    return start, add_months(today, 3)


def goal_range(first_day: date) -> tuple[date, date]:
    """Twelve-month goal window starting on the first tracked day."""
    return first_day, add_months(first_day, 12)


def goal_progress(logs: Mapping[str, DayLog], mode: str, today: date) -> GoalProgress:
    """Dot-grid view of a month, quarter or 12-month goal window.

    Today counts as still to go until it is logged.
    """
    if mode not in GOAL_MODES:
        raise ValueError(f"Invalid goal mode: {mode}")
    progress = GoalProgress(mode=mode)
    first_day = first_tracking_day(logs)
    if first_day is None:
        return progress

    if mode == "month":
        start, end = month_range(today)
    elif mode == "quarter":
        start, end = quarter_range(today, first_day)
    else:
        start, end = goal_range(first_day)
    progress.start, progress.end = start, end

    for d in weekdays_in_range(start, end):
        status = day_status(d, logs, today)
        if d > today or (d == today and status not in (GREEN, RED)):
            kind = "future"
            progress.remaining += 1
        elif d < first_day:
            kind = "before"
        else:
            kind = status if status in (GREEN, RED) else GREY
            if status == GREEN:
                progress.green_count += 1
            if status in (GREEN, RED):
                progress.tracked += 1
        progress.dots.append(GoalDot(date=d, kind=kind))

    progress.rate = completion_rate(progress.green_count, progress.tracked - progress.green_count)
    return progress
