"""
Job payload schemas.
"""
from reminder_engine.schemas.jobs import (
    JobPayload,
    MedicationReminderJob,
    AppointmentReminderJob,
    ShiftReminderJob,
    RefillAlertJob,
    NotificationJob,
    DeadLetterJob,
    validate_job_payload,
    dump_payload,
)

__all__ = [
    "JobPayload",
    "MedicationReminderJob",
    "AppointmentReminderJob",
    "ShiftReminderJob",
    "RefillAlertJob",
    "NotificationJob",
    "DeadLetterJob",
    "validate_job_payload",
    "dump_payload",
]
