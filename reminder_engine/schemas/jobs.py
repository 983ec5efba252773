"""
Job payload schemas.

Payloads are JSON documents stored on the queue. Workers validate them on
every attempt; a payload that does not match its schema is a validation
failure and goes straight to the dead-letter queue.
"""
import uuid
from datetime import date
from typing import Annotated, Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, AfterValidator, AwareDatetime
from pydantic import ValidationError as PydanticValidationError

from reminder_engine.models.enums import NotificationChannel, Priority
from reminder_engine.utils.errors import ValidationError


def _check_uuid(value: str) -> str:
    uuid.UUID(value)
    return value


EntityId = Annotated[str, AfterValidator(_check_uuid)]


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class MedicationReminderJob(JobPayload):
    medication_id: EntityId
    care_recipient_id: EntityId
    scheduled_time: AwareDatetime
    medication_name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    minutes_before: int = Field(..., ge=0, le=1440)


class AppointmentReminderJob(JobPayload):
    appointment_id: EntityId
    care_recipient_id: EntityId
    appointment_time: AwareDatetime
    title: str = Field(..., min_length=1)
    location: Optional[str] = None
    minutes_before: int = Field(..., ge=0, le=2880)


class ShiftReminderJob(JobPayload):
    shift_id: EntityId
    care_recipient_id: EntityId
    caregiver_id: EntityId
    start_time: AwareDatetime
    minutes_before: int = Field(..., ge=0, le=1440)


class RefillAlertJob(JobPayload):
    medication_id: EntityId
    medication_name: str = Field(..., min_length=1)
    current_supply: int = Field(..., ge=0)
    refill_at: int = Field(..., ge=0)
    care_recipient_id: EntityId
    care_recipient_name: str = Field(..., min_length=1)
    check_date: date


class NotificationJob(JobPayload):
    """One logical notification to deliver to one user over one channel."""
    channel: NotificationChannel
    user_id: EntityId
    title: str = Field(..., min_length=1, max_length=100)
    body: str = Field(..., min_length=1, max_length=500)
    data: Dict[str, str] = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL


class DeadLetterJob(JobPayload):
    """A job that failed for good, on its way to the dead-letter handler."""
    original_category: str
    original_job_id: str
    original_payload: Dict[str, Any] = Field(default_factory=dict)
    error: str
    error_kind: str
    failed_at: AwareDatetime
    attempts_made: int = Field(..., ge=0)


P = TypeVar("P", bound=JobPayload)


def validate_job_payload(schema: Type[P], data: Any, name: Optional[str] = None) -> P:
    """
    Validate a raw payload against its schema.

    Raises:
        ValidationError: With every field error folded into the message
    """
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(
            f"Invalid {name or schema.__name__} payload: {problems}",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def dump_payload(payload: JobPayload) -> Dict[str, Any]:
    """JSON-safe dict for storing on the queue."""
    return payload.model_dump(mode="json")
