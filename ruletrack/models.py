"""Typed dataclasses for the RuleTrack data model.

All models use from_dict/to_dict for JSON serialization.
camelCase in JSON is mapped to snake_case in Python.
Unknown keys are ignored; missing or mistyped settings keys use defaults.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping


GREEN = "green"
RED = "red"
GREY = "grey"
NONE = "none"
DAY_STATUSES = (GREEN, RED, GREY, NONE)

ACCENT_COLORS = [
    "#ef4444",  # red
    "#f97316",  # orange
    "#eab308",  # yellow
    "#84cc16",  # lime
    "#22c55e",  # green
    "#14b8a6",  # teal
    "#06b6d4",  # cyan
    "#3b82f6",  # blue
    "#6366f1",  # indigo
    "#8b5cf6",  # violet
    "#a855f7",  # purple
    "#d946ef",  # fuchsia
    "#ec4899",  # pink
    "#6b7280",  # grey
]

VALID_INTERVALS = (5, 15, 30, 60)
APP_THEMES = ("system", "light", "dark")
WIDGET_THEMES = ("light", "dark")

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_HEX = re.compile(r"^#[0-9a-fA-F]{6}$")


def parse_hhmm(s: str) -> tuple[int, int]:
    """Parse 'HH:mm' (24-hour) into (hours, minutes)."""
    m = _HHMM.match(s) if isinstance(s, str) else None
    if not m:
        raise ValueError(f"Invalid time: {s!r} (expected HH:mm)")
    return int(m.group(1)), int(m.group(2))


# ── Rules ─────────────────────────────────────────────────────


@dataclass
class Rule:
    id: str = ""
    text: str = ""
    created_at: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Rule:
        return cls(
            id=str(d.get("id", "")),
            text=str(d.get("text", "")),
            created_at=str(d.get("createdAt", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "createdAt": self.created_at}


# ── Day logs ──────────────────────────────────────────────────


@dataclass
class DayLog:
    """A locked day. Use LoggedDay or NoTradeDay."""

    date: str = ""
    locked_at: str | None = None

    @property
    def no_trade_day(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "date": self.date,
            "status": self.status,
            "noTradeDay": self.no_trade_day,
        }
        if self.locked_at:
            d["lockedAt"] = self.locked_at
        return d


@dataclass
class LoggedDay(DayLog):
    """Checklist submitted: green iff every rule was followed."""

    status: str = RED
    rule_results: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_results(cls, day: str, rule_results: dict[str, bool], locked_at: str | None = None) -> LoggedDay:
        status = GREEN if all(rule_results.values()) else RED
        return cls(date=day, locked_at=locked_at, status=status, rule_results=dict(rule_results))

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["ruleResults"] = dict(self.rule_results)
        return d


@dataclass
class NoTradeDay(DayLog):
    """No trades taken: counts as a followed day."""

    @property
    def status(self) -> str:
        return GREEN

    @property
    def no_trade_day(self) -> bool:
        return True


def day_log_from_dict(d: dict[str, Any]) -> DayLog:
    """Rebuild the tagged variant from the stored JSON shape."""
    day = str(d.get("date", ""))
    locked_at = d.get("lockedAt")
    if d.get("noTradeDay"):
        return NoTradeDay(date=day, locked_at=locked_at)
    results = d.get("ruleResults")
    status = GREEN if d.get("status") == GREEN else RED
    return LoggedDay(
        date=day,
        locked_at=locked_at,
        status=status,
        rule_results={str(k): bool(v) for k, v in results.items()} if isinstance(results, dict) else {},
    )


# ── App data ──────────────────────────────────────────────────


@dataclass
class AppData:
    rules: list[Rule] = field(default_factory=list)
    logs: dict[str, DayLog] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Any) -> AppData:
        data, _ = cls.from_dict_deduped(d)
        return data

    @classmethod
    def from_dict_deduped(cls, d: Any) -> tuple[AppData, bool]:
        """Parse stored data, dropping repeated rule ids.

        Returns (data, had_duplicates). The first rule with a given id wins.
        """
        if not d or not isinstance(d, dict):
            return cls(), False
        seen: set[str] = set()
        rules: list[Rule] = []
        duplicates = False
        for rd in d.get("rules") or []:
            if not isinstance(rd, dict):
                continue
            rule = Rule.from_dict(rd)
            if rule.id in seen:
                duplicates = True
                continue
            seen.add(rule.id)
            rules.append(rule)
        logs: dict[str, DayLog] = {}
        raw_logs = d.get("logs")
        for key, ld in (raw_logs if isinstance(raw_logs, dict) else {}).items():
            if isinstance(ld, dict):
                log = day_log_from_dict(ld)
                log.date = log.date or str(key)
                logs[str(key)] = log
        return cls(rules=rules, logs=logs), duplicates

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules": [r.to_dict() for r in self.rules],
            "logs": {k: v.to_dict() for k, v in self.logs.items()},
        }

    def find_rule(self, rule_id: str) -> Rule | None:
        for r in self.rules:
            if r.id == rule_id:
                return r
        return None


def day_status(day: date, logs: Mapping[str, DayLog], today: date) -> str:
    """Derived status of a calendar day.

    Weekends are always ``none``; a stored log wins otherwise; unlogged past
    weekdays are ``grey``; today and future unlogged days are ``none``.
    """
    if day.weekday() >= 5:
        return NONE
    log = logs.get(day.isoformat())
    if log is not None:
        return log.status
    if day < today:
        return GREY
    return NONE


# ── Settings ──────────────────────────────────────────────────


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _stored(d: dict[str, Any], key: str, default: Any, check: Callable[[Any], bool]) -> Any:
    """Stored value when it passes ``check``, else the default."""
    value = d.get(key, default)
    return value if check(value) else default


@dataclass
class WidgetSettings:
    theme: str = "dark"
    accent_color: str = "#22c55e"
    show_completion_indicator: bool = True

    @classmethod
    def from_dict(cls, d: Any) -> WidgetSettings:
        if not d or not isinstance(d, dict):
            return cls()
        default = cls()
        return cls(
            theme=_stored(d, "theme", default.theme, _is_str),
            accent_color=_stored(d, "accentColor", default.accent_color, _is_str),
            show_completion_indicator=_stored(
                d, "showCompletionIndicator", default.show_completion_indicator, _is_bool
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "theme": self.theme,
            "accentColor": self.accent_color,
            "showCompletionIndicator": self.show_completion_indicator,
        }

    def validate(self) -> list[str]:
        errors = []
        if not isinstance(self.theme, str) or self.theme not in WIDGET_THEMES:
            errors.append(f"Invalid widget theme: {self.theme!r}")
        if not isinstance(self.accent_color, str) or not _HEX.match(self.accent_color):
            errors.append(f"Invalid accent color: {self.accent_color!r}")
        if not isinstance(self.show_completion_indicator, bool):
            errors.append("showCompletionIndicator must be true or false")
        return errors


@dataclass
class NotificationSettings:
    enabled: bool = False
    start_time: str = "16:00"
    interval: int = 15  # minutes
    end_time: str = "23:00"

    @classmethod
    def from_dict(cls, d: Any) -> NotificationSettings:
        if not d or not isinstance(d, dict):
            return cls()
        default = cls()
        return cls(
            enabled=_stored(d, "enabled", default.enabled, _is_bool),
            start_time=_stored(d, "startTime", default.start_time, _is_str),
            interval=_stored(d, "interval", default.interval, _is_int),
            end_time=_stored(d, "endTime", default.end_time, _is_str),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "startTime": self.start_time,
            "interval": self.interval,
            "endTime": self.end_time,
        }

    def validate(self) -> list[str]:
        errors = []
        if not isinstance(self.enabled, bool):
            errors.append("enabled must be true or false")
        for label, value in (("startTime", self.start_time), ("endTime", self.end_time)):
            try:
                parse_hhmm(value)
            except ValueError as e:
                errors.append(f"{label}: {e}")
        if not _is_int(self.interval) or self.interval not in VALID_INTERVALS:
            errors.append(f"interval must be one of {list(VALID_INTERVALS)}")
        return errors


def resolve_theme(app_theme: str, system_scheme: str | None) -> str:
    """Effective light/dark appearance for an app theme preference."""
    if app_theme == "system":
        return system_scheme if system_scheme in WIDGET_THEMES else "light"
    return app_theme if app_theme in WIDGET_THEMES else "light"
