"""Load/save of the persisted RuleTrack records.

Four independent records live under stable keys. Display reads never raise:
a missing or unreadable record yields its default so callers keep working
on storage failure. ``read_app_data`` and every ``save_*`` are strict and
raise ``StorageError`` instead, so a read-modify-write never builds on a
default that was substituted for data it could not read.
"""

from __future__ import annotations

from typing import Any

from ruletrack.kvstore import JsonKeyValueStore
from ruletrack.logging import get_logger
from ruletrack.models import APP_THEMES, AppData, NotificationSettings, WidgetSettings


logger = get_logger(__name__)

APP_DATA_KEY = "trading_tracker_data"
WIDGET_SETTINGS_KEY = "widget_settings"
NOTIFICATION_SETTINGS_KEY = "notification_settings"
APP_THEME_KEY = "app_theme"


class StorageError(Exception):
    """A persisted record could not be read or written."""


def _read(kv: JsonKeyValueStore, key: str) -> Any:
    try:
        return kv.get(key)
    except Exception as e:
        raise StorageError(f"Error loading {key}: {e}") from e


def _write(kv: JsonKeyValueStore, key: str, value: Any) -> None:
    try:
        kv.set(key, value)
    except Exception as e:
        raise StorageError(f"Error saving {key}: {e}") from e


# ── App data ──────────────────────────────────────────────────


def read_app_data(kv: JsonKeyValueStore) -> tuple[AppData, bool]:
    """Strict load of rules + logs: (data, had_duplicate_rule_ids)."""
    raw = _read(kv, APP_DATA_KEY)
    try:
        return AppData.from_dict_deduped(raw)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Malformed {APP_DATA_KEY}: {e}") from e


def get_app_data(kv: JsonKeyValueStore) -> AppData:
    """Load rules + logs for display, rewriting storage if duplicate rule ids were found."""
    try:
        data, had_duplicates = read_app_data(kv)
    except StorageError:
        logger.exception("Could not load %s, using empty data", APP_DATA_KEY)
        return AppData()
    if had_duplicates:
        logger.info("Removed duplicate rule ids from %s", APP_DATA_KEY)
        try:
            save_app_data(kv, data)
        except StorageError:
            logger.exception("Could not rewrite deduplicated %s", APP_DATA_KEY)
    return data


def save_app_data(kv: JsonKeyValueStore, data: AppData) -> None:
    _write(kv, APP_DATA_KEY, data.to_dict())


# ── Settings ──────────────────────────────────────────────────


def get_widget_settings(kv: JsonKeyValueStore) -> WidgetSettings:
    try:
        return WidgetSettings.from_dict(_read(kv, WIDGET_SETTINGS_KEY))
    except (StorageError, TypeError, ValueError):
        logger.exception("Could not load %s, using defaults", WIDGET_SETTINGS_KEY)
        return WidgetSettings()


def save_widget_settings(kv: JsonKeyValueStore, settings: WidgetSettings) -> None:
    _write(kv, WIDGET_SETTINGS_KEY, settings.to_dict())


def get_notification_settings(kv: JsonKeyValueStore) -> NotificationSettings:
    try:
        return NotificationSettings.from_dict(_read(kv, NOTIFICATION_SETTINGS_KEY))
    except (StorageError, TypeError, ValueError):
        logger.exception("Could not load %s, using defaults", NOTIFICATION_SETTINGS_KEY)
        return NotificationSettings()


def save_notification_settings(kv: JsonKeyValueStore, settings: NotificationSettings) -> None:
    _write(kv, NOTIFICATION_SETTINGS_KEY, settings.to_dict())


def get_app_theme(kv: JsonKeyValueStore) -> str:
    try:
        theme = _read(kv, APP_THEME_KEY)
    except StorageError:
        logger.exception("Could not load %s, using system", APP_THEME_KEY)
        return "system"
    return theme if theme in APP_THEMES else "system"


def save_app_theme(kv: JsonKeyValueStore, theme: str) -> None:
    _write(kv, APP_THEME_KEY, theme)
