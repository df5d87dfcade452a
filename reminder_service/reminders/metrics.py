from prometheus_client import Counter


reminders_created_total = Counter(
    "reminders_created_total",
    "Total reminders created via API",
)

idempotent_replays_total = Counter(
    "reminder_idempotent_replays_total",
    "Total creation requests answered from a stored idempotent response",
)

idempotency_conflicts_total = Counter(
    "reminder_idempotency_conflicts_total",
    "Total creation requests rejected for idempotency key conflicts",
)

reminder_transitions_total = Counter(
    "reminder_transitions_total",
    "Total reminder status transitions",
    ["to_status"],
)

scanner_ticks_total = Counter(
    "reminder_scanner_ticks_total",
    "Total scanner cycles that ran",
)

scanner_ticks_skipped_total = Counter(
    "reminder_scanner_ticks_skipped_total",
    "Total scanner cycles skipped because a previous cycle was still running",
)

reminders_claimed_total = Counter(
    "reminders_claimed_total",
    "Total due reminders claimed by the scanner",
)

claims_lost_total = Counter(
    "reminder_claims_lost_total",
    "Total due reminders another scanner claimed first",
)

events_published_total = Counter(
    "reminder_events_published_total",
    "Total events published to the broker",
    ["routing_key"],
)

event_publish_failures_total = Counter(
    "reminder_event_publish_failures_total",
    "Total events the broker did not accept",
    ["routing_key"],
)

background_job_failures_total = Counter(
    "reminder_background_job_failures_total",
    "Total background jobs that exhausted their retries",
)
