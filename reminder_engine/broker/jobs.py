"""
Job categories, statuses and deterministic job ids.
"""
from dataclasses import dataclass
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict
from zoneinfo import ZoneInfo

from reminder_engine.models.enums import NotificationChannel


class JobCategory(str, Enum):
    """Queues the engine runs; one worker pool per category."""
    MEDICATION = "medication"
    APPOINTMENT = "appointment"
    SHIFT = "shift"
    REFILL = "refill"
    NOTIFICATION = "notification"
    DEAD_LETTER = "dead-letter"


class JobStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RETRY_WAIT = "retry_wait"
    COMPLETED = "completed"
    DEAD_LETTERED = "dead_lettered"


# Statuses in which enqueueing the same id is a no-op; only completed rows are replaced
BLOCKING_STATUSES = (
    JobStatus.PENDING.value,
    JobStatus.ACTIVE.value,
    JobStatus.RETRY_WAIT.value,
    JobStatus.DEAD_LETTERED.value,
)

# Statuses a slot may claim from (active only once its lease has expired)
CLAIMABLE_STATUSES = (JobStatus.PENDING.value, JobStatus.RETRY_WAIT.value)


@dataclass
class Job:
    """A claimed job handed to a handler."""
    id: str
    category: JobCategory
    payload: Dict[str, Any]
    attempt: int
    max_attempts: int
    created_at: datetime

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


def medication_job_id(medication_id: str, scheduled_time: datetime, zone: ZoneInfo, offset: int) -> str:
    """medication-<id>-<local YYYYMMDDTHHMM>-<offset>"""
    local = scheduled_time.astimezone(zone)
    return f"{JobCategory.MEDICATION.value}-{medication_id}-{local:%Y%m%dT%H%M}-{offset}"


def appointment_job_id(appointment_id: str, offset: int) -> str:
    return f"{JobCategory.APPOINTMENT.value}-{appointment_id}-{offset}"


def shift_job_id(shift_id: str, offset: int) -> str:
    return f"{JobCategory.SHIFT.value}-{shift_id}-{offset}"


def refill_job_id(medication_id: str, check_date: date) -> str:
    return f"{JobCategory.REFILL.value}-{medication_id}-{check_date.isoformat()}"


def dispatch_job_id(channel: NotificationChannel, idempotency_key: str, user_id: str) -> str:
    """Derived from the notification idempotency key so category retries cannot duplicate sends."""
    return f"{channel.value.lower()}-{idempotency_key}-{user_id}"


def dead_letter_job_id(original_job_id: str, failed_at: datetime) -> str:
    return f"dlq-{original_job_id}-{int(failed_at.timestamp() * 1000)}"


def replay_job_id(original_job_id: str, record_id: str) -> str:
    return f"{original_job_id}-replay-{record_id}"
