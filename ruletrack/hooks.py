"""Lifecycle hooks for RuleTrack.

Hooks run shell commands at key points, configured under ``hooks:`` in
config.yaml. A widget host can, for example, reload its timeline from the
``widget_refresh`` hook.

Hook points:
- on_rules_changed
- post_submit, post_no_trade
- widget_refresh
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

from ruletrack.logging import get_logger
from ruletrack.workspace import load_config, workspace_root


logger = get_logger(__name__)


VALID_HOOK_POINTS = {
    "on_rules_changed",
    "post_submit",
    "post_no_trade",
    "widget_refresh",
}

DEFAULT_TIMEOUT = 30


def load_hooks_config(root: Path | None = None) -> dict[str, Any]:
    """Hook section of config.yaml."""
    hooks = load_config(root).get("hooks")
    return hooks if isinstance(hooks, dict) else {}


def _hook_command(hook: Any) -> tuple[str, float]:
    """Normalise a hook entry: a bare command string or {command, timeout}."""
    if isinstance(hook, str):
        return hook, DEFAULT_TIMEOUT
    if isinstance(hook, dict):
        return str(hook.get("command") or ""), hook.get("timeout", DEFAULT_TIMEOUT)
    return "", DEFAULT_TIMEOUT


def _run_hook(command: str, timeout: float, payload: str, root: Path) -> dict[str, Any]:
    try:
        proc = subprocess.run(
            command,
            shell=True,
            input=payload,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=str(root),
        )
    except subprocess.TimeoutExpired:
        return {"exit_code": -1, "error": f"Hook timed out after {timeout}s"}
    except OSError as e:
        return {"exit_code": -1, "error": str(e)}
    return {
        "exit_code": proc.returncode,
        "stdout": proc.stdout[:4096],
        "stderr": proc.stderr[:4096],
    }


def run_hooks(
    hook_point: str,
    context: dict[str, Any],
    root: Path | None = None,
) -> list[dict[str, Any]]:
    """Run every command registered for a hook point, in order.

    The context goes to each command as JSON on stdin. Returns one result per
    command with its exit code and captured output.
    """
    if hook_point not in VALID_HOOK_POINTS:
        return []
    if root is None:
        root = workspace_root()

    hooks = load_hooks_config(root).get(hook_point)
    if not isinstance(hooks, list):
        return []

    payload = json.dumps(context, ensure_ascii=False)
    results = []
    for hook in hooks:
        command, timeout = _hook_command(hook)
        if not command:
            continue
        result = {"command": command, "hook_point": hook_point}
        result.update(_run_hook(command, timeout, payload, root))
        if result["exit_code"] != 0:
            logger.warning("Hook %s for %s failed: %s", command, hook_point, result.get("error") or result.get("stderr"))
        results.append(result)
    return results
