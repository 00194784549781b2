"""Reminder scheduling for RuleTrack.

Reminders nag the user during an afternoon window until today is logged.
Nothing is persisted beyond NotificationSettings: every relevant change
(settings saved, day logged, app start) cancels this system's tagged
reminders and recomputes the set from scratch. Actual firing belongs to
the notification dispatcher.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from ruletrack.fileio import read_json, write_json_atomic
from ruletrack.logging import get_logger
from ruletrack.models import NotificationSettings, parse_hhmm
from ruletrack.workspace import DEFAULT_NOTIFICATION_TAG


logger = get_logger(__name__)

MAX_REMINDERS = 50

REMINDER_PAYLOAD = {
    "title": "Trading Rules Check",
    "body": "Did you follow your trading rules today? Don't forget to log!",
    "sound": True,
    "badge": 1,
}


# ── Dispatchers ───────────────────────────────────────────────


class NotificationDispatcher(Protocol):
    def schedule_at(self, reminder_id: str, seconds_from_now: int, payload: dict[str, Any]) -> None: ...

    def cancel(self, reminder_id: str) -> None: ...

    def list_scheduled(self) -> list[str]: ...

    def has_permission(self) -> bool: ...

    def request_permission(self) -> bool: ...


@dataclass
class ScheduledReminder:
    id: str
    seconds_from_now: int
    payload: dict[str, Any] = field(default_factory=dict)


class InMemoryDispatcher:
    """Dispatcher that only records what was scheduled."""

    def __init__(self, permission: bool = True, grant_on_request: bool = True):
        self.permission = permission
        self.grant_on_request = grant_on_request
        self.scheduled: dict[str, ScheduledReminder] = {}

    def schedule_at(self, reminder_id: str, seconds_from_now: int, payload: dict[str, Any]) -> None:
        self.scheduled[reminder_id] = ScheduledReminder(reminder_id, seconds_from_now, dict(payload))

    def cancel(self, reminder_id: str) -> None:
        self.scheduled.pop(reminder_id, None)

    def list_scheduled(self) -> list[str]:
        return list(self.scheduled)

    def has_permission(self) -> bool:
        return self.permission

    def request_permission(self) -> bool:
        if not self.permission and self.grant_on_request:
            self.permission = True
        return self.permission


class OutboxDispatcher:
    """Durable outbox for an external notifier process.

    Each entry stores its absolute fire time, so whatever delivers the
    notification can poll the file without knowing when it was written.
    """

    def __init__(
        self,
        path: Path,
        allow_permission: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        self.path = Path(path)
        self.allow_permission = allow_permission
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _load(self) -> dict[str, Any]:
        data = read_json(self.path)
        if not isinstance(data, dict):
            data = {}
        data.setdefault("permissionGranted", False)
        data.setdefault("scheduled", {})
        return data

    def _save(self, data: dict[str, Any]) -> None:
        write_json_atomic(self.path, data)

    def schedule_at(self, reminder_id: str, seconds_from_now: int, payload: dict[str, Any]) -> None:
        data = self._load()
        fire_at = self._clock() + timedelta(seconds=seconds_from_now)
        data["scheduled"][reminder_id] = {
            "fireAt": fire_at.isoformat(timespec="seconds"),
            "secondsFromNow": seconds_from_now,
            "payload": payload,
        }
        self._save(data)

    def cancel(self, reminder_id: str) -> None:
        data = self._load()
        if data["scheduled"].pop(reminder_id, None) is not None:
            self._save(data)

    def list_scheduled(self) -> list[str]:
        return list(self._load()["scheduled"])

    def has_permission(self) -> bool:
        return bool(self._load()["permissionGranted"])

    def request_permission(self) -> bool:
        data = self._load()
        if not data["permissionGranted"] and self.allow_permission:
            data["permissionGranted"] = True
            self._save(data)
        return bool(data["permissionGranted"])


# ── Scheduling ────────────────────────────────────────────────


def _at(now: datetime, hhmm: str) -> datetime:
    hours, minutes = parse_hhmm(hhmm)
    return now.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def _round_up(now: datetime, interval_minutes: int) -> datetime:
    """Next multiple of the interval since midnight, at or after now."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - midnight).total_seconds()
    step = interval_minutes * 60
    return midnight + timedelta(seconds=math.ceil(elapsed / step) * step)


def compute_reminder_times(
    settings: NotificationSettings,
    now: datetime,
    today_logged: bool,
    has_permission: bool = True,
) -> list[datetime]:
    """Instants to remind at today, in order.

    Empty when reminders are off, today is already logged, it is a weekend,
    permission is missing, or the window has closed. Instants stay strictly
    before the end of the window and never exceed MAX_REMINDERS.
    """
    if not settings.enabled or today_logged or not has_permission:
        return []
    if now.weekday() >= 5:
        return []

    start = _at(now, settings.start_time)
    end = _at(now, settings.end_time)
    if now >= end:
        return []

    step = timedelta(minutes=settings.interval)
    current = _round_up(now, settings.interval) if now > start else start

    times: list[datetime] = []
    while current < end and len(times) < MAX_REMINDERS:
        times.append(current)
        current += step
    return times


def cancel_all_reminders(dispatcher: NotificationDispatcher, tag: str = DEFAULT_NOTIFICATION_TAG) -> int:
    """Cancel every pending reminder carrying this system's tag."""
    cancelled = 0
    for reminder_id in dispatcher.list_scheduled():
        if reminder_id.startswith(tag):
            dispatcher.cancel(reminder_id)
            cancelled += 1
    return cancelled


def schedule_reminders(
    settings: NotificationSettings,
    today_logged: bool,
    dispatcher: NotificationDispatcher,
    now: datetime,
    tag: str = DEFAULT_NOTIFICATION_TAG,
) -> int:
    """Replace today's reminders. Returns the number scheduled."""
    cancel_all_reminders(dispatcher, tag)

    if not settings.enabled or today_logged:
        return 0

    times = compute_reminder_times(settings, now, today_logged, dispatcher.has_permission())
    for index, fire_at in enumerate(times):
        seconds = max(1, int((fire_at - now).total_seconds()))
        dispatcher.schedule_at(f"{tag}-{index}", seconds, REMINDER_PAYLOAD)

    logger.debug("Scheduled %d reminders", len(times))
    return len(times)


def scheduled_reminder_count(dispatcher: NotificationDispatcher, tag: str = DEFAULT_NOTIFICATION_TAG) -> int:
    return sum(1 for reminder_id in dispatcher.list_scheduled() if reminder_id.startswith(tag))


def request_permissions(dispatcher: NotificationDispatcher) -> bool:
    """Ask once for notification permission; a denial is reported, not retried."""
    if dispatcher.has_permission():
        return True
    granted = dispatcher.request_permission()
    if not granted:
        logger.info("Notification permission denied; reminders stay off")
    return granted
