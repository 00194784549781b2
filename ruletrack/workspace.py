"""Workspace root, configuration, timezone and path helpers for RuleTrack."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from ruletrack.fileio import read_yaml


DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_NOTIFICATION_TAG = "trading-reminder"


def workspace_root() -> Path:
    """Get the workspace root directory (contains config.yaml and data/)."""
    return Path(
        os.environ.get("RULETRACK_ROOT", str(Path.home() / "ruletrack"))
    ).expanduser().resolve()


def config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "config.yaml"


def load_config(root: Path | None = None) -> dict[str, Any]:
    """Load config.yaml; a missing or unreadable file yields an empty mapping."""
    try:
        return read_yaml(config_path(root))
    except (OSError, ValueError, yaml.YAMLError):
        return {}


def get_timezone(root: Path | None = None) -> ZoneInfo:
    """Reference timezone for "today", defaulting to US Eastern."""
    name = load_config(root).get("timezone") or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(str(name))
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def get_notification_tag(root: Path | None = None) -> str:
    return str(load_config(root).get("notification_tag") or DEFAULT_NOTIFICATION_TAG)


def get_log_level(root: Path | None = None) -> str:
    return str(load_config(root).get("log_level") or "INFO")


# ── Path helpers ──────────────────────────────────────────────

def data_dir(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data"


def reminder_outbox_path(root: Path | None = None) -> Path:
    return data_dir(root) / "reminder_outbox.json"


def widget_snapshot_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "widget" / "snapshot.json"
