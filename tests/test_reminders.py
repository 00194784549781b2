"""Tests for ruletrack/reminders.py — reminder times, scheduling and dispatchers."""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from ruletrack.models import NotificationSettings
from ruletrack.reminders import (
    MAX_REMINDERS,
    InMemoryDispatcher,
    OutboxDispatcher,
    cancel_all_reminders,
    compute_reminder_times,
    request_permissions,
    schedule_reminders,
    scheduled_reminder_count,
)


ET = ZoneInfo("America/New_York")
WINDOW = NotificationSettings(enabled=True, start_time="16:00", interval=15, end_time="17:00")


def _hm(times):
    return [t.strftime("%H:%M") for t in times]


def test_window_in_progress_rounds_up():
    now = datetime(2026, 2, 11, 16, 7, tzinfo=ET)
    assert _hm(compute_reminder_times(WINDOW, now, today_logged=False)) == ["16:15", "16:30", "16:45"]


def test_before_window_starts_at_start_time():
    now = datetime(2026, 2, 11, 15, 0, tzinfo=ET)
    assert _hm(compute_reminder_times(WINDOW, now, today_logged=False)) == ["16:00", "16:15", "16:30", "16:45"]


def test_exact_boundary_is_kept():
    now = datetime(2026, 2, 11, 16, 30, tzinfo=ET)
    assert _hm(compute_reminder_times(WINDOW, now, today_logged=False)) == ["16:30", "16:45"]


def test_seconds_push_to_next_slot():
    now = datetime(2026, 2, 11, 16, 30, 20, tzinfo=ET)
    assert _hm(compute_reminder_times(WINDOW, now, today_logged=False)) == ["16:45"]


def test_hourly_interval_crosses_hour():
    settings = NotificationSettings(enabled=True, start_time="16:00", interval=60, end_time="20:00")
    now = datetime(2026, 2, 11, 16, 7, tzinfo=ET)
    assert _hm(compute_reminder_times(settings, now, today_logged=False)) == ["17:00", "18:00", "19:00"]


def test_nothing_after_window():
    now = datetime(2026, 2, 11, 17, 0, tzinfo=ET)
    assert compute_reminder_times(WINDOW, now, today_logged=False) == []


def test_nothing_when_off_logged_weekend_or_denied():
    weekday = datetime(2026, 2, 11, 16, 7, tzinfo=ET)
    saturday = datetime(2026, 2, 14, 16, 7, tzinfo=ET)
    off = NotificationSettings(enabled=False, start_time="16:00", interval=15, end_time="17:00")
    assert compute_reminder_times(off, weekday, today_logged=False) == []
    assert compute_reminder_times(WINDOW, weekday, today_logged=True) == []
    assert compute_reminder_times(WINDOW, saturday, today_logged=False) == []
    assert compute_reminder_times(WINDOW, weekday, today_logged=False, has_permission=False) == []


def test_capped_at_fifty():
    settings = NotificationSettings(enabled=True, start_time="00:00", interval=5, end_time="23:55")
    now = datetime(2026, 2, 11, 0, 0, tzinfo=ET)
    times = compute_reminder_times(settings, now, today_logged=False)
    assert len(times) == MAX_REMINDERS


def test_schedule_reminders_relative_seconds():
    dispatcher = InMemoryDispatcher()
    now = datetime(2026, 2, 11, 16, 7, tzinfo=ET)
    count = schedule_reminders(WINDOW, False, dispatcher, now, tag="trading-reminder")
    assert count == 3
    assert sorted(dispatcher.scheduled) == ["trading-reminder-0", "trading-reminder-1", "trading-reminder-2"]
    assert [dispatcher.scheduled[f"trading-reminder-{i}"].seconds_from_now for i in range(3)] == [480, 1380, 2280]
    assert dispatcher.scheduled["trading-reminder-0"].payload["title"] == "Trading Rules Check"


def test_schedule_replaces_only_tagged_reminders():
    dispatcher = InMemoryDispatcher()
    dispatcher.schedule_at("calendar-1", 60, {})
    dispatcher.schedule_at("trading-reminder-7", 60, {})
    now = datetime(2026, 2, 11, 16, 40, tzinfo=ET)
    count = schedule_reminders(WINDOW, False, dispatcher, now, tag="trading-reminder")
    assert count == 1
    assert set(dispatcher.scheduled) == {"calendar-1", "trading-reminder-0"}


def test_schedule_without_permission_clears_and_schedules_nothing():
    dispatcher = InMemoryDispatcher(permission=False)
    dispatcher.schedule_at("trading-reminder-0", 60, {})
    now = datetime(2026, 2, 11, 16, 7, tzinfo=ET)
    assert schedule_reminders(WINDOW, False, dispatcher, now) == 0
    assert dispatcher.scheduled == {}


def test_cancel_all_reminders_leaves_other_sources():
    dispatcher = InMemoryDispatcher()
    dispatcher.schedule_at("trading-reminder-0", 60, {})
    dispatcher.schedule_at("trading-reminder-1", 120, {})
    dispatcher.schedule_at("other", 60, {})
    assert cancel_all_reminders(dispatcher, "trading-reminder") == 2
    assert dispatcher.list_scheduled() == ["other"]
    assert scheduled_reminder_count(dispatcher, "trading-reminder") == 0


def test_request_permissions_denied_is_reported(caplog):
    dispatcher = InMemoryDispatcher(permission=False, grant_on_request=False)
    with caplog.at_level(logging.INFO, logger="ruletrack.reminders"):
        assert request_permissions(dispatcher) is False
    assert "denied" in caplog.text


def test_request_permissions_granted():
    dispatcher = InMemoryDispatcher(permission=False)
    assert request_permissions(dispatcher) is True
    assert dispatcher.has_permission()


def test_outbox_dispatcher(tmp_path):
    fixed = datetime(2026, 2, 11, 21, 7, tzinfo=timezone.utc)
    outbox = OutboxDispatcher(tmp_path / "outbox.json", clock=lambda: fixed)
    assert outbox.has_permission() is False
    assert outbox.request_permission() is True

    outbox.schedule_at("trading-reminder-0", 480, {"title": "x"})
    assert outbox.list_scheduled() == ["trading-reminder-0"]

    reopened = OutboxDispatcher(tmp_path / "outbox.json")
    assert reopened.has_permission() is True
    assert reopened.list_scheduled() == ["trading-reminder-0"]

    outbox.cancel("trading-reminder-0")
    assert outbox.list_scheduled() == []


def test_outbox_records_fire_time(tmp_path):
    import json

    fixed = datetime(2026, 2, 11, 21, 7, tzinfo=timezone.utc)
    path = tmp_path / "outbox.json"
    OutboxDispatcher(path, clock=lambda: fixed).schedule_at("trading-reminder-0", 480, {})
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["scheduled"]["trading-reminder-0"]["fireAt"] == "2026-02-11T21:15:00+00:00"


def test_outbox_permission_can_be_withheld(tmp_path):
    outbox = OutboxDispatcher(tmp_path / "outbox.json", allow_permission=False)
    assert outbox.request_permission() is False
