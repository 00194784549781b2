"""Tests for ruletrack/store.py — rule and day-log mutations with side effects."""

import json
import threading
import time
from datetime import date, datetime

import pytest

from ruletrack import storage
from ruletrack.kvstore import JsonKeyValueStore
from ruletrack.models import LoggedDay, NoTradeDay
from ruletrack.reminders import InMemoryDispatcher
from ruletrack.storage import APP_DATA_KEY
from ruletrack.store import TrackerStore, generate_rule_id, validate_checklist

from conftest import ET, FakeClock


class RecordingWidget:
    def __init__(self):
        self.calls = 0

    def notify_data_changed(self) -> None:
        self.calls += 1


class BrokenWidget:
    def notify_data_changed(self) -> None:
        raise RuntimeError("widget host unavailable")


class BrokenDispatcher(InMemoryDispatcher):
    def list_scheduled(self) -> list[str]:
        raise RuntimeError("notification service down")


# ── Rules ─────────────────────────────────────────────────────


def test_add_rule(store):
    rule = store.add_rule("  Respect the stop loss  ")
    assert rule.text == "Respect the stop loss"
    assert rule.id
    assert [r.id for r in store.rules] == [rule.id]


@pytest.mark.parametrize("text", ["", "   ", None])
def test_add_rule_rejects_empty(store, text):
    with pytest.raises(ValueError, match="empty"):
        store.add_rule(text)
    assert store.rules == []


def test_rules_persist(store, workspace, clock):
    store.add_rule("A")
    store.add_rule("B")
    reopened = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert [r.text for r in reopened.rules] == ["A", "B"]


def test_generate_rule_id_format():
    rule_id = generate_rule_id()
    millis, suffix = rule_id.split("-")
    assert millis.isdigit()
    assert len(suffix) == 9


def test_update_rule_keeps_identity_and_order(store):
    a = store.add_rule("A")
    b = store.add_rule("B")
    updated = store.update_rule(a.id, "A2")
    assert updated.id == a.id
    assert updated.created_at == a.created_at
    assert [r.text for r in store.rules] == ["A2", "B"]
    assert store.rules[1].id == b.id


def test_update_unknown_rule_is_noop(store):
    store.add_rule("A")
    assert store.update_rule("missing", "X") is None
    assert [r.text for r in store.rules] == ["A"]


def test_delete_rule_idempotent(store):
    a = store.add_rule("A")
    assert store.delete_rule(a.id) is True
    assert store.delete_rule(a.id) is False
    assert store.rules == []


def test_duplicate_rules_removed_on_load(workspace, clock):
    kv = JsonKeyValueStore(workspace / "data")
    kv.set(APP_DATA_KEY, {
        "rules": [
            {"id": "1", "text": "A", "createdAt": ""},
            {"id": "1", "text": "A again", "createdAt": ""},
            {"id": "2", "text": "B", "createdAt": ""},
        ],
        "logs": {},
    })
    store = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert [r.id for r in store.rules] == ["1", "2"]
    assert [r["id"] for r in kv.get(APP_DATA_KEY)["rules"]] == ["1", "2"]


def test_corrupt_storage_yields_empty_data(workspace, clock):
    (workspace / "data" / f"{APP_DATA_KEY}.json").write_text("{not json", encoding="utf-8")
    store = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert store.rules == []
    assert store.logs == {}


# ── Day logs ──────────────────────────────────────────────────


def test_submit_day_log_green(store, today):
    a = store.add_rule("A")
    b = store.add_rule("B")
    log = store.submit_day_log({a.id: True, b.id: True})
    assert isinstance(log, LoggedDay)
    assert log.status == "green"
    assert log.date == today.isoformat()
    assert log.locked_at.startswith("2026-02-11T16:07")
    assert store.get_day_status(today) == "green"
    assert store.can_edit_today is False


def test_submit_day_log_red(store):
    a = store.add_rule("A")
    b = store.add_rule("B")
    assert store.submit_day_log({a.id: True, b.id: False}).status == "red"


def test_second_submit_is_refused(store, workspace, clock, today):
    a = store.add_rule("A")
    first = store.submit_day_log({a.id: False})
    assert store.submit_day_log({a.id: True}) is None
    assert store.today_log.status == "red"

    # A second store instance (e.g. a double tap from another view) is refused too
    other = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert other.submit_day_log({a.id: True}) is None
    assert other.mark_no_trade_day() is None
    stored = JsonKeyValueStore(workspace / "data").get(APP_DATA_KEY)["logs"][today.isoformat()]
    assert stored == first.to_dict()


def test_mark_no_trade_day(store, today):
    log = store.mark_no_trade_day()
    assert isinstance(log, NoTradeDay)
    assert store.get_day_status(today) == "green"
    assert store.mark_no_trade_day() is None
    assert store.submit_day_log({}) is None


def test_past_unlogged_day_is_grey(store):
    assert store.get_day_status(date(2026, 2, 10)) == "grey"
    assert store.get_day_status(date(2026, 2, 8)) == "none"


def test_clear_logs(store):
    store.mark_no_trade_day()
    assert store.clear_logs() == 1
    assert store.logs == {}
    assert store.can_edit_today is True


def test_validate_checklist(store):
    a = store.add_rule("A")
    b = store.add_rule("B")
    assert validate_checklist(store.rules, {a.id: True, b.id: False}) == []
    errors = validate_checklist(store.rules, {a.id: True, "ghost": True})
    assert "Missing result for rule: B" in errors
    assert "Unknown rule id: ghost" in errors
    assert validate_checklist(store.rules, {a.id: "yes", b.id: True})


# ── Side effects ──────────────────────────────────────────────


def test_submit_cancels_reminders(store, dispatcher):
    a = store.add_rule("A")
    store.update_notification_settings(enabled=True, start_time="16:00", end_time="17:00", interval=15)
    assert len(dispatcher.scheduled) == 3
    store.submit_day_log({a.id: True})
    assert dispatcher.scheduled == {}


def test_reschedule_skips_logged_day(store, dispatcher):
    store.update_notification_settings(enabled=True, start_time="16:00", end_time="17:00", interval=15)
    store.mark_no_trade_day()
    assert store.reschedule_reminders() == 0
    assert dispatcher.scheduled == {}


def test_rule_change_refreshes_widget(workspace, clock):
    widget = RecordingWidget()
    store = TrackerStore(JsonKeyValueStore(workspace / "data"), InMemoryDispatcher(), widget, ET, clock=clock)
    rule = store.add_rule("A")
    store.submit_day_log({rule.id: True})
    assert widget.calls == 2


def test_side_effect_failures_do_not_block_mutation(workspace, clock):
    store = TrackerStore(JsonKeyValueStore(workspace / "data"), BrokenDispatcher(), BrokenWidget(), ET, clock=clock)
    rule = store.add_rule("A")
    log = store.submit_day_log({rule.id: True})
    assert log is not None
    assert store.today_log.status == "green"


def test_open_writes_widget_snapshot(store, workspace):
    rule = store.add_rule("A")
    store.submit_day_log({rule.id: True})
    snapshot = json.loads((workspace / "widget" / "snapshot.json").read_text(encoding="utf-8"))
    assert snapshot["today"] == "2026-02-11"
    assert snapshot["todayLogged"] is True
    assert snapshot["stats"]["rate"] == 100


def test_today_follows_reference_timezone(workspace):
    # 03:00 UTC on the 12th is still the 11th in New York
    from zoneinfo import ZoneInfo
    clock = FakeClock(datetime(2026, 2, 12, 3, 0, tzinfo=ZoneInfo("UTC")))
    store = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert store.today() == date(2026, 2, 11)


# ── Settings ──────────────────────────────────────────────────


def test_update_widget_settings(store):
    settings = store.update_widget_settings(theme="light", accent_color="#3b82f6")
    assert settings.theme == "light"
    assert store.widget_settings.accent_color == "#3b82f6"


def test_update_widget_settings_invalid(store):
    with pytest.raises(ValueError):
        store.update_widget_settings(theme="sepia")
    with pytest.raises(ValueError):
        store.update_widget_settings(font="comic")
    assert store.widget_settings.theme == "dark"


def test_update_notification_settings_invalid(store):
    with pytest.raises(ValueError, match="interval"):
        store.update_notification_settings(interval=7)


def test_notification_settings_persist(store, workspace, clock):
    store.update_notification_settings(enabled=True, interval=30)
    reopened = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert reopened.notification_settings.enabled is True
    assert reopened.notification_settings.interval == 30


def test_enabling_reminders_requests_permission(workspace, clock):
    dispatcher = InMemoryDispatcher(permission=False)
    store = TrackerStore.open(workspace, dispatcher=dispatcher, clock=clock)
    store.update_notification_settings(enabled=True, start_time="16:00", end_time="17:00")
    assert dispatcher.has_permission()
    assert len(dispatcher.scheduled) == 3


def test_app_theme(store, workspace, clock):
    assert store.app_theme == "system"
    assert store.effective_theme("dark") == "dark"
    store.set_app_theme("light")
    assert store.effective_theme("dark") == "light"
    with pytest.raises(ValueError):
        store.set_app_theme("purple")
    reopened = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert reopened.app_theme == "light"


# ── Storage failures and concurrency ──────────────────────────


def _disk_full(key, value):
    raise OSError("disk full")


def test_concurrent_submits_from_separate_stores(workspace, clock, monkeypatch):
    rule = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock).add_rule("A")
    stores = {
        name: TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
        for name in ("red", "green")
    }

    real_read = storage.read_app_data

    def slow_read(kv):
        data = real_read(kv)
        time.sleep(0.1)
        return data

    monkeypatch.setattr(storage, "read_app_data", slow_read)

    results = {}
    barrier = threading.Barrier(2)

    def submit(name, followed):
        barrier.wait()
        results[name] = stores[name].submit_day_log({rule.id: followed})

    threads = [
        threading.Thread(target=submit, args=("red", False)),
        threading.Thread(target=submit, args=("green", True)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    winners = [name for name, log in results.items() if log is not None]
    assert len(winners) == 1
    stored = JsonKeyValueStore(workspace / "data").get(APP_DATA_KEY)["logs"]["2026-02-11"]
    assert stored["status"] == results[winners[0]].status


def test_read_failure_leaves_stored_data_untouched(store, workspace, monkeypatch):
    rule = store.add_rule("A")
    store.mark_no_trade_day()

    real_get = store.kv.get
    failed = []

    def flaky_get(key):
        if not failed:
            failed.append(key)
            raise OSError("read error")
        return real_get(key)

    monkeypatch.setattr(store.kv, "get", flaky_get)

    assert store.add_rule("B") is None
    assert "read error" in store.last_error
    assert [r.id for r in store.rules] == [rule.id]
    stored = JsonKeyValueStore(workspace / "data").get(APP_DATA_KEY)
    assert [r["id"] for r in stored["rules"]] == [rule.id]
    assert "2026-02-11" in stored["logs"]


def test_write_failure_does_not_lock_the_day(store, workspace, clock, dispatcher, monkeypatch):
    rule = store.add_rule("A")
    store.update_notification_settings(enabled=True, start_time="16:00", end_time="17:00")
    monkeypatch.setattr(store.kv, "set", _disk_full)

    assert store.submit_day_log({rule.id: True}) is None
    assert "disk full" in store.last_error
    assert store.can_edit_today is True
    assert len(dispatcher.scheduled) == 3

    fresh = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    assert fresh.can_edit_today is True


def test_last_error_clears_after_success(store, monkeypatch):
    monkeypatch.setattr(store.kv, "set", _disk_full)
    assert store.mark_no_trade_day() is None
    assert store.last_error is not None
    monkeypatch.undo()
    assert store.mark_no_trade_day() is not None
    assert store.last_error is None


def test_settings_save_failure_keeps_previous_values(store, monkeypatch):
    monkeypatch.setattr(store.kv, "set", _disk_full)
    assert store.update_widget_settings(theme="light") is None
    assert store.widget_settings.theme == "dark"
    assert store.update_notification_settings(enabled=True) is None
    assert store.notification_settings.enabled is False
    assert store.set_app_theme("dark") is None
    assert store.app_theme == "system"


# ── App start ─────────────────────────────────────────────────


def test_start_schedules_reminders_and_writes_snapshot(workspace, clock, dispatcher):
    setup = TrackerStore.open(workspace, dispatcher=InMemoryDispatcher(), clock=clock)
    setup.update_notification_settings(enabled=True, start_time="16:00", end_time="17:00")

    store = TrackerStore.open(workspace, dispatcher=dispatcher, clock=clock)
    assert dispatcher.scheduled == {}
    assert store.start() == 3
    assert sorted(dispatcher.scheduled) == ["trading-reminder-0", "trading-reminder-1", "trading-reminder-2"]
    assert (workspace / "widget" / "snapshot.json").exists()
