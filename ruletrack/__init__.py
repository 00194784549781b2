"""RuleTrack core library: trading-discipline checklist data and engines.

Public API re-exports for convenient imports:
    from ruletrack import TrackerStore, compute_stats, schedule_reminders, ...
"""

# Workspace & config
from ruletrack.workspace import (
    workspace_root,
    load_config,
    get_timezone,
    get_notification_tag,
    get_log_level,
    data_dir,
    reminder_outbox_path,
    widget_snapshot_path,
)

# Logging
from ruletrack.logging import setup_logging, get_logger

# Dates
from ruletrack.dates import (
    WEEKDAY_LABELS,
    WEEKDAY_LABELS_NO_WEEKEND,
    format_date,
    parse_date,
    format_month_year,
    is_weekend,
    is_past,
    is_today,
    add_months,
    weekdays_in_range,
    weekdays_in_month,
    all_days_in_month,
    month_grid,
    month_grid_rows,
    group_by_week,
    first_tracking_day,
)

# Models
from ruletrack.models import (
    ACCENT_COLORS,
    Rule,
    DayLog,
    LoggedDay,
    NoTradeDay,
    AppData,
    WidgetSettings,
    NotificationSettings,
    day_log_from_dict,
    day_status,
    resolve_theme,
)

# Persistence
from ruletrack.kvstore import JsonKeyValueStore
from ruletrack.storage import (
    StorageError,
    get_app_data,
    save_app_data,
    get_widget_settings,
    save_widget_settings,
    get_notification_settings,
    save_notification_settings,
    get_app_theme,
    save_app_theme,
)

# Statistics
from ruletrack.stats import (
    PeriodStats,
    WeekStats,
    GoalProgress,
    completion_rate,
    compute_stats,
    month_stats,
    weekly_rates,
    goal_progress,
)

# Reminders
from ruletrack.reminders import (
    InMemoryDispatcher,
    OutboxDispatcher,
    compute_reminder_times,
    schedule_reminders,
    cancel_all_reminders,
    scheduled_reminder_count,
    request_permissions,
)

# Widget & store
from ruletrack.widget import build_widget_snapshot, SnapshotWidgetRefresher
from ruletrack.store import TrackerStore, validate_checklist
