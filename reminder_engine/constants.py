"""
Application constants with documented reasoning.

This file centralizes "magic numbers" used throughout the codebase,
providing clear documentation for why each value was chosen.
"""

# =============================================================================
# REMINDER OFFSETS
# =============================================================================

# Minutes before a dose: a heads-up, a nudge, a final warning and "due now"
MEDICATION_REMINDER_OFFSETS = (30, 15, 5, 0)

# Minutes before an appointment: the day before, then an hour and half an hour
# before, which leaves time to arrange transport
APPOINTMENT_REMINDER_OFFSETS = (1440, 60, 30)

# Minutes before a caregiver shift starts
SHIFT_REMINDER_OFFSETS = (60, 15)

# Offset at or below which a medication reminder is sent with high priority
MEDICATION_HIGH_PRIORITY_OFFSET = 5

# Offset at which the assigned transport person gets their own reminder
TRANSPORT_REMINDER_OFFSET = 60

# =============================================================================
# SCHEDULER
# =============================================================================

# Scheduler tick interval
# 60 seconds matches the minute granularity of every offset above, so each
# (entity, offset) pair lands in exactly one tick bucket
SCHEDULER_TICK_SECONDS = 60

# Local wall-clock time of the daily refill check
# Morning, so families can reach the pharmacy the same day
REFILL_CHECK_TIME = "09:00"

# Supply at or below which a refill alert is escalated to urgent
REFILL_URGENT_SUPPLY = 5

# =============================================================================
# WORKERS & QUEUE
# =============================================================================

# Per-category worker concurrency
# Dispatch gets the most slots since each job is a handful of HTTP sends;
# dead letters are serialized to avoid alert storms
DEFAULT_WORKER_CONCURRENCY = {
    "medication": 10,
    "appointment": 10,
    "shift": 10,
    "refill": 5,
    "notification": 20,
    "dead-letter": 1,
}

# Idle poll interval for worker slots when the queue is empty
WORKER_POLL_INTERVAL_SECONDS = 1.0

# Lease on a claimed job; a slot that neither finishes nor heartbeats within
# this window is treated as stalled and the job is redelivered
JOB_VISIBILITY_TIMEOUT_SECONDS = 30

# How long shutdown waits for in-flight jobs before cancelling them
WORKER_SHUTDOWN_TIMEOUT_SECONDS = 15

# Default retry policy: 5 attempts, 1s base delay doubling each time,
# capped at 5 minutes so a long outage does not push retries out for hours
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_BACKOFF_MAX_MS = 300_000

# =============================================================================
# HTTP CLIENT TIMEOUTS
# =============================================================================

# Channel sink timeout (push gateway, SendGrid, Twilio)
# 10 seconds; a provider slower than that is treated as unreachable
CHANNEL_TIMEOUT_SECONDS = 10

# Alert webhook timeout - shorter because webhooks should be fast
ALERT_TIMEOUT_SECONDS = 5

# Alert webhook retries (best-effort, never fails the dead-letter handler)
ALERT_MAX_RETRIES = 3
ALERT_INITIAL_BACKOFF_SECONDS = 1.0
ALERT_BACKOFF_MULTIPLIER = 2.0

# =============================================================================
# DATABASE
# =============================================================================

# SQLite busy timeout - wait for locks before failing
# 5 seconds handles concurrent worker slots without long hangs
SQLITE_BUSY_TIMEOUT_MS = 5000

# =============================================================================
# BACKGROUND TASKS & RETENTION
# =============================================================================

# Background task health check interval
TASK_MONITOR_CHECK_INTERVAL_SECONDS = 60

# Data retention cleanup interval
# Hourly matches the shortest retention window (completed jobs)
RETENTION_CLEANUP_INTERVAL_SECONDS = 3600

# Completed jobs are only useful for dedupe while their trigger window is
# open, failed ones are kept a day for debugging
COMPLETED_JOB_RETENTION_HOURS = 1
FAILED_JOB_RETENTION_HOURS = 24

# Scheduler run log retention
SCHEDULER_RUN_RETENTION_DAYS = 7

# Dead-letter records are the audit trail of dropped work
DEAD_LETTER_RETENTION_DAYS = 90
