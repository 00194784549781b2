"""Shared test fixtures for RuleTrack tests."""

from __future__ import annotations

import os
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import yaml

from ruletrack.models import DayLog, LoggedDay, NoTradeDay
from ruletrack.reminders import InMemoryDispatcher
from ruletrack.store import TrackerStore


ET = ZoneInfo("America/New_York")

# Wednesday, inside a 16:00-17:00 reminder window.
DEFAULT_NOW = datetime(2026, 2, 11, 16, 7, tzinfo=ET)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _make_logs(statuses: dict[str, str]) -> dict[str, DayLog]:
    """Fixture-data generator: {'2026-02-09': 'green' | 'red' | 'notrade'} -> logs."""
    logs: dict[str, DayLog] = {}
    for day, kind in statuses.items():
        if kind == "notrade":
            logs[day] = NoTradeDay(date=day)
        else:
            logs[day] = LoggedDay.from_results(day, {"r1": kind == "green", "r2": True})
    return logs


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace with a config file."""
    root = tmp_path / "workspace"
    (root / "data").mkdir(parents=True)

    config = {"timezone": "America/New_York", "log_level": "DEBUG"}
    (root / "config.yaml").write_text(yaml.dump(config, default_flow_style=False), encoding="utf-8")

    os.environ["RULETRACK_ROOT"] = str(root)
    yield root
    if "RULETRACK_ROOT" in os.environ:
        del os.environ["RULETRACK_ROOT"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(DEFAULT_NOW)


@pytest.fixture
def dispatcher() -> InMemoryDispatcher:
    return InMemoryDispatcher()


@pytest.fixture
def store(workspace: Path, clock: FakeClock, dispatcher: InMemoryDispatcher) -> TrackerStore:
    return TrackerStore.open(workspace, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def make_logs():
    return _make_logs


@pytest.fixture
def today() -> date:
    return DEFAULT_NOW.date()
