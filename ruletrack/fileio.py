"""File helpers for RuleTrack's JSON records and YAML config.

Records are replaced whole: each write lands in a sibling temp file that is
fsynced under ``flock`` and renamed over the target, so readers see either
the old document or the new one.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml


def _contents(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def read_json(path: Path) -> Any:
    """Decoded JSON document, or None when the file is missing or blank.

    Malformed JSON raises ``json.JSONDecodeError``; callers decide the fallback.
    """
    text = _contents(path)
    if text is None or not text.strip():
        return None
    return json.loads(text)


def read_yaml(path: Path) -> dict[str, Any]:
    """Top-level YAML mapping; anything else (missing, empty, a list) is {}."""
    text = _contents(path)
    loaded = yaml.safe_load(text) if text else None
    return loaded if isinstance(loaded, dict) else {}


def write_json_atomic(path: Path, record: Any) -> None:
    """Replace ``path`` with ``record`` as indented UTF-8 JSON."""
    payload = json.dumps(record, indent=2, ensure_ascii=False) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
