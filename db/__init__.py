from .db import (
    Base,
    User,
    Reminder,
    Event,
    ScheduledNotification,
    NotificationLog,
    get_engine,
    get_session,
    create_all,
    dispose_engine,
    delete_pending_jobs_for_item,
    replace_pending_jobs,
    insert_jobs,
    cancel_pending_jobs,
    update_pending_channels,
    list_pending_jobs,
    claim_due_jobs,
    update_job_status,
    append_log_entries,
    search_logs,
    insert_reminder,
)  # noqa: F401
