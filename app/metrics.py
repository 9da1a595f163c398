"""Prometheus business counters for the marketplace."""

from prometheus_client import Counter

# Booking lifecycle counters
BOOKINGS_CREATED = Counter(
    "dwh_bookings_created_total",
    "Total job applications (bookings) created",
)
BOOKINGS_COMPLETED = Counter(
    "dwh_bookings_completed_total",
    "Total bookings checked out",
)
BOOKINGS_CANCELLED = Counter(
    "dwh_bookings_cancelled_total",
    "Total bookings cancelled",
    ["cancelled_by"],
)

# Wallet ledger counters
WALLET_OPERATIONS = Counter(
    "dwh_wallet_operations_total",
    "Total wallet ledger mutations",
    ["operation"],
)

# Dispute counters
DISPUTES_OPENED = Counter(
    "dwh_disputes_opened_total",
    "Total disputes raised",
    ["raised_by_role"],
)
DISPUTES_RESOLVED = Counter(
    "dwh_disputes_resolved_total",
    "Total disputes resolved",
    ["resolution"],
)

# Push delivery outcomes
PUSH_DELIVERIES = Counter(
    "dwh_push_deliveries_total",
    "Push notification delivery attempts",
    ["outcome"],
)

# Scheduler job counters
SCHEDULER_JOB_RUNS = Counter(
    "dwh_scheduler_job_runs_total",
    "Total scheduler job executions",
    ["job_name", "status"],
)

# Registration counters
USERS_REGISTERED = Counter(
    "dwh_users_registered_total",
    "Total users registered",
    ["role"],
)
