"""Application state and the mutations allowed on it.

TrackerStore is the one object views hold on to: it carries rules, logs and
settings in memory, and every change goes through its methods so storage,
reminders and the widget stay in step.

A day is locked once it has a log. Submitting twice is refused, not
overwritten. Each persisted record is changed under its storage lock after
re-reading what is on disk, so a rapid double submit still finds the first
log. A record that cannot be read or written is left as it was, in memory
and on disk: the method returns None (False or 0 where it returns a count)
and ``last_error`` holds the reason. Reminder and widget updates that follow
a mutation are best-effort and never undo or fail it.
"""

from __future__ import annotations

import dataclasses
import secrets
import string
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, TypeVar
from zoneinfo import ZoneInfo

from ruletrack import storage
from ruletrack.hooks import run_hooks
from ruletrack.kvstore import JsonKeyValueStore
from ruletrack.logging import get_logger
from ruletrack.models import (
    APP_THEMES,
    AppData,
    DayLog,
    LoggedDay,
    NoTradeDay,
    NotificationSettings,
    Rule,
    WidgetSettings,
    day_status,
    resolve_theme,
)
from ruletrack.reminders import (
    NotificationDispatcher,
    OutboxDispatcher,
    cancel_all_reminders,
    request_permissions,
    schedule_reminders,
)
from ruletrack.storage import StorageError
from ruletrack.widget import SnapshotWidgetRefresher, WidgetRefresher
from ruletrack.workspace import (
    DEFAULT_NOTIFICATION_TAG,
    DEFAULT_TIMEZONE,
    data_dir,
    get_notification_tag,
    get_timezone,
    reminder_outbox_path,
    workspace_root,
)


logger = get_logger(__name__)

T = TypeVar("T")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_rule_id() -> str:
    """'<epoch ms>-<9 random base36 chars>'."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def validate_checklist(rules: list[Rule], rule_results: dict[str, Any]) -> list[str]:
    """Check that a submission answers every current rule, and nothing else."""
    errors = []
    known = {r.id for r in rules}
    for rule in rules:
        if rule.id not in rule_results:
            errors.append(f"Missing result for rule: {rule.text}")
        elif not isinstance(rule_results[rule.id], bool):
            errors.append(f"Result for rule {rule.id} must be true or false")
    for rule_id in rule_results:
        if rule_id not in known:
            errors.append(f"Unknown rule id: {rule_id}")
    return errors


class TrackerStore:
    def __init__(
        self,
        kv: JsonKeyValueStore,
        dispatcher: NotificationDispatcher | None = None,
        widget: WidgetRefresher | None = None,
        tz: ZoneInfo | None = None,
        tag: str = DEFAULT_NOTIFICATION_TAG,
        root: Path | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.kv = kv
        self.dispatcher = dispatcher
        self.widget = widget
        self.tz = tz or ZoneInfo(DEFAULT_TIMEZONE)
        self.tag = tag
        self.root = root
        self._clock = clock or (lambda: datetime.now(self.tz))

        self.rules: list[Rule] = []
        self.logs: dict[str, DayLog] = {}
        self.widget_settings = WidgetSettings()
        self.notification_settings = NotificationSettings()
        self.app_theme = "system"
        self.last_error: str | None = None
        self.refresh()

    @classmethod
    def open(
        cls,
        root: Path | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> TrackerStore:
        """Store backed by a workspace directory, with outbox reminders and a widget snapshot."""
        if root is None:
            root = workspace_root()
        kv = JsonKeyValueStore(data_dir(root))
        if dispatcher is None:
            dispatcher = OutboxDispatcher(reminder_outbox_path(root))
        store = cls(
            kv,
            dispatcher=dispatcher,
            tz=get_timezone(root),
            tag=get_notification_tag(root),
            root=root,
            clock=clock,
        )
        store.widget = SnapshotWidgetRefresher(root, kv, store.today)
        return store

    # ── Clock ─────────────────────────────────────────────────

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    # ── Loading ───────────────────────────────────────────────

    def refresh(self) -> None:
        """Reload every record from storage."""
        data = storage.get_app_data(self.kv)
        self.rules = data.rules
        self.logs = data.logs
        self.widget_settings = storage.get_widget_settings(self.kv)
        self.notification_settings = storage.get_notification_settings(self.kv)
        self.app_theme = storage.get_app_theme(self.kv)

    def _mutate(self, change: Callable[[AppData], tuple[T, bool]]) -> T | None:
        """Read-modify-write of app data under its lock; ``change`` reports whether to save.

        Returns None and leaves memory and disk as they were when the record
        cannot be read or written.
        """
        self.last_error = None
        try:
            with self.kv.lock(storage.APP_DATA_KEY):
                data, had_duplicates = storage.read_app_data(self.kv)
                result, changed = change(data)
                if changed or had_duplicates:
                    storage.save_app_data(self.kv, data)
        except (StorageError, OSError) as e:
            logger.exception("App data update failed; nothing was changed")
            self.last_error = str(e)
            return None
        self.rules = data.rules
        self.logs = data.logs
        return result

    def _persist(self, key: str, save: Callable[[JsonKeyValueStore, Any], None], value: Any) -> bool:
        self.last_error = None
        try:
            with self.kv.lock(key):
                save(self.kv, value)
        except (StorageError, OSError) as e:
            logger.exception("Saving %s failed", key)
            self.last_error = str(e)
            return False
        return True

    # ── Rules ─────────────────────────────────────────────────

    def add_rule(self, text: str) -> Rule | None:
        """Append a rule with a fresh id. Returns None if storage fails."""
        text = (text or "").strip()
        if not text:
            raise ValueError("Rule text cannot be empty")

        def change(data: AppData) -> tuple[Rule, bool]:
            existing = {r.id for r in data.rules}
            rule_id = generate_rule_id()
            while rule_id in existing:
                rule_id = generate_rule_id()
            rule = Rule(id=rule_id, text=text, created_at=self.now().isoformat(timespec="seconds"))
            data.rules.append(rule)
            return rule, True

        rule = self._mutate(change)
        if rule is not None:
            self._after_rules_changed("added", rule.id)
        return rule

    def update_rule(self, rule_id: str, text: str) -> Rule | None:
        """Replace a rule's text in place. Unknown ids are ignored (returns None)."""
        text = (text or "").strip()
        if not text:
            raise ValueError("Rule text cannot be empty")

        def change(data: AppData) -> tuple[Rule | None, bool]:
            rule = data.find_rule(rule_id)
            if rule is None:
                return None, False
            rule.text = text
            return rule, True

        rule = self._mutate(change)
        if rule is not None:
            self._after_rules_changed("updated", rule_id)
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        def change(data: AppData) -> tuple[bool, bool]:
            before = len(data.rules)
            data.rules = [r for r in data.rules if r.id != rule_id]
            removed = len(data.rules) != before
            return removed, removed

        removed = bool(self._mutate(change))
        if removed:
            self._after_rules_changed("deleted", rule_id)
        return removed

    # ── Day logs ──────────────────────────────────────────────

    def _lock_today(self, make: Callable[[str, str], DayLog]) -> DayLog | None:
        key = self.today().isoformat()
        locked_at = self.now().isoformat(timespec="seconds")

        def change(data: AppData) -> tuple[DayLog | None, bool]:
            if key in data.logs:
                return None, False
            log = make(key, locked_at)
            data.logs[key] = log
            return log, True

        return self._mutate(change)

    def submit_day_log(self, rule_results: dict[str, bool]) -> LoggedDay | None:
        """Lock today with checklist results: green iff every result is true.

        Returns None when today is already logged or storage fails. Coverage of the current
        rules is checked with ``validate_checklist`` before calling this.
        """
        log = self._lock_today(lambda key, at: LoggedDay.from_results(key, rule_results, locked_at=at))
        if log is None:
            if self.last_error is None:
                logger.info("Day %s already logged; submission ignored", self.today())
            return None
        self._after_day_locked("post_submit", log)
        return log

    def mark_no_trade_day(self) -> NoTradeDay | None:
        """Lock today as a no-trade day (green). Returns None when already logged."""
        log = self._lock_today(lambda key, at: NoTradeDay(date=key, locked_at=at))
        if log is None:
            if self.last_error is None:
                logger.info("Day %s already logged; no-trade mark ignored", self.today())
            return None
        self._after_day_locked("post_no_trade", log)
        return log

    def clear_logs(self) -> int:
        """Administrative bulk clear of every day log."""
        def change(data: AppData) -> tuple[int, bool]:
            count = len(data.logs)
            data.logs = {}
            return count, count > 0

        count = self._mutate(change) or 0
        if count:
            logger.info("Cleared %d day logs", count)
            self._best_effort("widget refresh", self._notify_widget)
            self.reschedule_reminders()
        return count

    def get_day_status(self, day: date) -> str:
        return day_status(day, self.logs, self.today())

    @property
    def today_log(self) -> DayLog | None:
        return self.logs.get(self.today().isoformat())

    @property
    def can_edit_today(self) -> bool:
        return self.today_log is None

    # ── Settings ──────────────────────────────────────────────

    def update_widget_settings(self, **changes: Any) -> WidgetSettings | None:
        try:
            settings = dataclasses.replace(self.widget_settings, **changes)
        except TypeError as e:
            raise ValueError(str(e)) from e
        errors = settings.validate()
        if errors:
            raise ValueError("; ".join(errors))
        if not self._persist(storage.WIDGET_SETTINGS_KEY, storage.save_widget_settings, settings):
            return None
        self.widget_settings = settings
        self._best_effort("widget refresh", self._notify_widget)
        return settings

    def update_notification_settings(self, **changes: Any) -> NotificationSettings | None:
        """Save new reminder settings and reschedule today's reminders.

        Invalid values raise ValueError; a failed save returns None.
        """
        try:
            settings = dataclasses.replace(self.notification_settings, **changes)
        except TypeError as e:
            raise ValueError(str(e)) from e
        errors = settings.validate()
        if errors:
            raise ValueError("; ".join(errors))
        if not self._persist(storage.NOTIFICATION_SETTINGS_KEY, storage.save_notification_settings, settings):
            return None
        self.notification_settings = settings
        if settings.enabled and self.dispatcher is not None:
            self._best_effort("permission request", request_permissions, self.dispatcher)
        self.reschedule_reminders()
        return settings

    def set_app_theme(self, theme: str) -> str | None:
        if theme not in APP_THEMES:
            raise ValueError(f"Invalid theme: {theme}")
        if not self._persist(storage.APP_THEME_KEY, storage.save_app_theme, theme):
            return None
        self.app_theme = theme
        return theme

    def effective_theme(self, system_scheme: str | None) -> str:
        return resolve_theme(self.app_theme, system_scheme)

    # ── Side effects ──────────────────────────────────────────

    def start(self) -> int:
        """App start: reload storage, recompute today's reminders, refresh the widget.

        Returns the number of reminders scheduled.
        """
        self.refresh()
        count = self.reschedule_reminders()
        self._best_effort("widget refresh", self._notify_widget)
        logger.info("RuleTrack started for %s with %d reminders", self.today(), count)
        return count

    def reschedule_reminders(self) -> int:
        """Recompute today's reminders from scratch (settings change, app start)."""
        if self.dispatcher is None:
            return 0
        count = self._best_effort(
            "reminder scheduling",
            schedule_reminders,
            self.notification_settings,
            not self.can_edit_today,
            self.dispatcher,
            self.now(),
            self.tag,
        )
        return count or 0

    def _best_effort(self, what: str, fn: Callable[..., T], *args: Any) -> T | None:
        try:
            return fn(*args)
        except Exception:
            logger.warning("%s failed", what, exc_info=True)
            return None

    def _notify_widget(self) -> None:
        if self.widget is not None:
            self.widget.notify_data_changed()

    def _run_hooks(self, hook_point: str, context: dict[str, Any]) -> None:
        if self.root is not None:
            run_hooks(hook_point, context, self.root)

    def _after_rules_changed(self, action: str, rule_id: str) -> None:
        self.reschedule_reminders()
        self._best_effort("widget refresh", self._notify_widget)
        self._best_effort(
            "on_rules_changed hook",
            self._run_hooks,
            "on_rules_changed",
            {"action": action, "ruleId": rule_id, "rules": [r.to_dict() for r in self.rules]},
        )

    def _after_day_locked(self, hook_point: str, log: DayLog) -> None:
        if self.dispatcher is not None:
            self._best_effort("reminder cancel", cancel_all_reminders, self.dispatcher, self.tag)
        self._best_effort("widget refresh", self._notify_widget)
        self._best_effort(f"{hook_point} hook", self._run_hooks, hook_point, log.to_dict())
