from prometheus_client import Counter


reminders_created_total = Counter(
    "reminders_created_total",
    "Total reminders created via API",
)

scheduler_scans_total = Counter(
    "reminder_scheduler_scans_total",
    "Total scheduler scan cycles",
)

scheduler_skipped_ticks_total = Counter(
    "reminder_scheduler_skipped_ticks_total",
    "Scheduled scans skipped because the previous scan was still running",
)

scheduler_enqueued_total = Counter(
    "reminder_scheduler_enqueued_total",
    "Total dispatch messages enqueued by the scheduler",
)

scheduler_no_subscription_total = Counter(
    "reminder_scheduler_no_subscription_total",
    "Due reminders whose recipients had no registered device",
)

scheduler_reminder_failures_total = Counter(
    "reminder_scheduler_reminder_failures_total",
    "Due reminders left waiting because resolution or enqueue failed",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total successful push dispatches",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total failed push dispatches",
)

subscriptions_removed_total = Counter(
    "reminder_subscriptions_removed_total",
    "Subscriptions removed because the push service reported them gone",
)
