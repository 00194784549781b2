"""Home-screen widget feed.

The widget never writes: it reads a snapshot rebuilt here whenever rules,
logs or widget settings change.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Protocol

from ruletrack.dates import first_tracking_day, format_month_year, month_grid
from ruletrack.fileio import write_json_atomic
from ruletrack.hooks import run_hooks
from ruletrack.kvstore import JsonKeyValueStore
from ruletrack.models import AppData, WidgetSettings, day_status
from ruletrack.stats import compute_stats, goal_progress
from ruletrack.storage import get_app_data, get_widget_settings
from ruletrack.workspace import widget_snapshot_path


class WidgetRefresher(Protocol):
    def notify_data_changed(self) -> None: ...


def build_widget_snapshot(data: AppData, settings: WidgetSettings, today: date) -> dict[str, Any]:
    """Everything the widget renders, as plain JSON."""
    first_day = first_tracking_day(data.logs)
    if first_day is not None:
        overall = compute_stats(data.logs, first_day, today, today)
        dots = [d.kind for d in goal_progress(data.logs, "year", today).dots if d.kind != "future"]
    else:
        overall = None
        dots = []

    month = [
        {"date": d.isoformat(), "status": day_status(d, data.logs, today)} if d else None
        for d in month_grid(today)
    ]

    return {
        "today": today.isoformat(),
        "monthLabel": format_month_year(today),
        "settings": settings.to_dict(),
        "todayLogged": today.isoformat() in data.logs,
        "stats": {
            "green": overall.green if overall else 0,
            "tracked": (overall.green + overall.red) if overall else 0,
            "rate": overall.rate if overall else 0,
            "streak": overall.streak if overall else 0,
        },
        "dots": dots,
        "month": month,
    }


class SnapshotWidgetRefresher:
    """Writes the widget snapshot and fires the ``widget_refresh`` hook."""

    def __init__(self, root: Path, kv: JsonKeyValueStore, today_fn):
        self.root = Path(root)
        self.kv = kv
        self.today_fn = today_fn

    def notify_data_changed(self) -> None:
        today = self.today_fn()
        snapshot = build_widget_snapshot(get_app_data(self.kv), get_widget_settings(self.kv), today)
        path = widget_snapshot_path(self.root)
        write_json_atomic(path, snapshot)
        run_hooks("widget_refresh", {"snapshot": str(path), "today": today.isoformat()}, self.root)
