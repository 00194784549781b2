from __future__ import annotations

import os
import secrets
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator

from fastapi import Body, Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ruletrack import (
    ACCENT_COLORS,
    TrackerStore,
    WEEKDAY_LABELS,
    format_month_year,
    get_log_level,
    goal_progress,
    month_grid_rows,
    month_stats,
    parse_date,
    scheduled_reminder_count,
    setup_logging,
    validate_checklist,
    weekly_rates,
    workspace_root,
)
from ruletrack.fileio import read_json
from ruletrack.workspace import widget_snapshot_path


setup_logging(get_log_level())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    TrackerStore.open(workspace_root()).start()
    yield


app = FastAPI(title="RuleTrack", version="0.1.0", lifespan=lifespan)

security = HTTPBasic(auto_error=False)


# ── Auth ──────────────────────────────────────────────────────


def get_current_user(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    expected_username = os.environ.get("RULETRACK_USERNAME", "")
    expected_password = os.environ.get("RULETRACK_PASSWORD", "")

    if not expected_username or not expected_password:
        return "guest"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), expected_username.encode("utf-8"))
    correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password.encode("utf-8"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


def get_store() -> TrackerStore:
    return TrackerStore.open(workspace_root())


def _stored(value: Any, store: TrackerStore) -> Any:
    """Pass a mutation result through, or answer 503 when storage failed."""
    if store.last_error is not None:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {store.last_error}")
    return value


def _month_param(month: str | None, store: TrackerStore) -> date:
    if not month:
        return store.today()
    try:
        return parse_date(f"{month}-01" if len(month) == 7 else month)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid month: {month}")


# ── Health ────────────────────────────────────────────────────


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ── Rules ─────────────────────────────────────────────────────


@app.get("/api/rules")
def api_list_rules(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return {"rules": [r.to_dict() for r in store.rules]}


@app.post("/api/rules")
def api_add_rule(
    payload: dict[str, Any] = Body(...),
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        rule = _stored(store.add_rule(str(payload.get("text", ""))), store)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "rule": rule.to_dict()}


@app.put("/api/rules/{rule_id}")
def api_update_rule(
    rule_id: str,
    payload: dict[str, Any] = Body(...),
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        rule = _stored(store.update_rule(rule_id, str(payload.get("text", ""))), store)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "rule": rule.to_dict() if rule else None}


@app.delete("/api/rules/{rule_id}")
def api_delete_rule(rule_id: str, store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return {"ok": True, "deleted": _stored(store.delete_rule(rule_id), store)}


# ── Today ─────────────────────────────────────────────────────


@app.get("/api/today")
def api_today(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    log = store.today_log
    return {
        "date": store.today().isoformat(),
        "status": store.get_day_status(store.today()),
        "canEdit": store.can_edit_today,
        "log": log.to_dict() if log else None,
        "rules": [r.to_dict() for r in store.rules],
    }


@app.post("/api/today/submit")
def api_submit_today(
    payload: dict[str, Any] = Body(...),
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    """Lock today with a result for every rule."""
    results = payload.get("ruleResults")
    if not isinstance(results, dict):
        raise HTTPException(status_code=400, detail="ruleResults must be an object")
    errors = validate_checklist(store.rules, results)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))
    log = _stored(store.submit_day_log(results), store)
    if log is None:
        raise HTTPException(status_code=409, detail="Today is already logged")
    return {"ok": True, "log": log.to_dict()}


@app.post("/api/today/no-trade")
def api_no_trade_today(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    log = _stored(store.mark_no_trade_day(), store)
    if log is None:
        raise HTTPException(status_code=409, detail="Today is already logged")
    return {"ok": True, "log": log.to_dict()}


# ── Statistics ────────────────────────────────────────────────


@app.get("/api/stats/month")
def api_month_stats(
    month: str | None = None,
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    target = _month_param(month, store)
    stats = month_stats(store.logs, target, store.today())
    return {"month": format_month_year(target), **stats.to_dict()}


@app.get("/api/stats/weeks")
def api_week_stats(
    month: str | None = None,
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    target = _month_param(month, store)
    return {"weeks": [w.to_dict() for w in weekly_rates(store.logs, target, store.today())]}


@app.get("/api/goal/{mode}")
def api_goal(mode: str, store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    try:
        return goal_progress(store.logs, mode, store.today()).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/api/month-grid")
def api_month_grid(
    month: str | None = None,
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    target = _month_param(month, store)
    rows = [
        [{"date": d.isoformat(), "status": store.get_day_status(d)} if d else None for d in row]
        for row in month_grid_rows(target)
    ]
    return {"month": format_month_year(target), "labels": WEEKDAY_LABELS, "rows": rows}


# ── Settings ──────────────────────────────────────────────────


_WIDGET_FIELDS = {"theme": "theme", "accentColor": "accent_color", "showCompletionIndicator": "show_completion_indicator"}
_NOTIFICATION_FIELDS = {"enabled": "enabled", "startTime": "start_time", "interval": "interval", "endTime": "end_time"}


def _changes(payload: dict[str, Any], fields: dict[str, str]) -> dict[str, Any]:
    unknown = set(payload) - set(fields)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown fields: {', '.join(sorted(unknown))}")
    return {fields[k]: v for k, v in payload.items()}


@app.get("/api/settings/widget")
def api_get_widget_settings(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return {**store.widget_settings.to_dict(), "accentColors": ACCENT_COLORS}


@app.put("/api/settings/widget")
def api_put_widget_settings(
    payload: dict[str, Any] = Body(...),
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        settings = _stored(store.update_widget_settings(**_changes(payload, _WIDGET_FIELDS)), store)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "settings": settings.to_dict()}


@app.get("/api/settings/notifications")
def api_get_notification_settings(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return store.notification_settings.to_dict()


@app.put("/api/settings/notifications")
def api_put_notification_settings(
    payload: dict[str, Any] = Body(...),
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        settings = _stored(store.update_notification_settings(**_changes(payload, _NOTIFICATION_FIELDS)), store)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    permission = store.dispatcher.has_permission() if store.dispatcher else False
    return {
        "ok": True,
        "settings": settings.to_dict(),
        "permissionGranted": permission,
        "scheduled": scheduled_reminder_count(store.dispatcher, store.tag) if store.dispatcher else 0,
    }


@app.get("/api/settings/theme")
def api_get_theme(system: str | None = None, store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return {"theme": store.app_theme, "effective": store.effective_theme(system)}


@app.put("/api/settings/theme")
def api_put_theme(
    payload: dict[str, Any] = Body(...),
    store: TrackerStore = Depends(get_store),
    username: str = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        theme = _stored(store.set_app_theme(str(payload.get("theme", ""))), store)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "theme": theme, "effective": store.effective_theme(payload.get("system"))}


# ── Widget & reminders ────────────────────────────────────────


@app.get("/api/widget")
def api_widget(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    """Last widget snapshot, rebuilt if none has been written yet."""
    snapshot = read_json(widget_snapshot_path(store.root))
    if not isinstance(snapshot, dict):
        store.widget.notify_data_changed()
        snapshot = read_json(widget_snapshot_path(store.root))
    return snapshot


@app.post("/api/reminders/reschedule")
def api_reschedule(store: TrackerStore = Depends(get_store), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return {"ok": True, "scheduled": store.reschedule_reminders()}
