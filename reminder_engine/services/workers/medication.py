"""
Medication reminder worker.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from reminder_engine.broker import JobCategory
from reminder_engine.constants import MEDICATION_HIGH_PRIORITY_OFFSET
from reminder_engine.models import Medication, CareRecipient
from reminder_engine.models.enums import NotificationType, Priority
from reminder_engine.schemas.jobs import MedicationReminderJob
from reminder_engine.services.domain_store import EntityKind
from reminder_engine.services.workers.base import CategoryWorker, OutgoingNotification, NOT_ACTIVE
from reminder_engine.utils.formatting import format_time


def medication_idempotency_key(medication_id: str, scheduled_time: datetime, zone: ZoneInfo, offset: int,
                               multi_dose: bool = False) -> str:
    """
    med-<id>-<YYYY-MM-DD>-<offset>, dated in the care recipient's zone.

    Medications with several doses a day add the dose time
    (med-<id>-<YYYY-MM-DD>T<HHMM>-<offset>) so each dose has its own key.
    """
    local = scheduled_time.astimezone(zone)
    occurrence = f"{local:%Y-%m-%d}T{local:%H%M}" if multi_dose else f"{local:%Y-%m-%d}"
    return f"med-{medication_id}-{occurrence}-{offset}"


@dataclass
class MedicationContext:
    medication: Medication
    care_recipient: CareRecipient


class MedicationReminderWorker(CategoryWorker[MedicationReminderJob]):
    """Reminds every active family member about an upcoming dose."""

    category = JobCategory.MEDICATION
    schema = MedicationReminderJob
    notification_type = NotificationType.MEDICATION_REMINDER

    async def load(self, payload: MedicationReminderJob) -> Optional[MedicationContext]:
        medication = await self.store.find_entity(EntityKind.MEDICATION, payload.medication_id)
        if medication is None:
            return None
        care_recipient = await self.store.find_entity(EntityKind.CARE_RECIPIENT, medication.care_recipient_id)
        if care_recipient is None:
            return None
        return MedicationContext(medication, care_recipient)

    def skip_reason(self, payload: MedicationReminderJob, context: MedicationContext) -> Optional[str]:
        if not context.medication.is_active:
            return NOT_ACTIVE
        return None

    async def build_notifications(
        self, payload: MedicationReminderJob, context: MedicationContext
    ) -> List[OutgoingNotification]:
        medication = context.medication
        care_recipient = context.care_recipient
        offset = payload.minutes_before

        schedule_zone = self.zone_for(None, care_recipient)
        key = medication_idempotency_key(
            medication.id,
            payload.scheduled_time,
            schedule_zone,
            offset,
            multi_dose=len(medication.scheduled_times or []) > 1,
        )
        priority = Priority.HIGH if offset <= MEDICATION_HIGH_PRIORITY_OFFSET else Priority.NORMAL
        name = care_recipient.display_name
        data = {
            "medicationId": medication.id,
            "careRecipientId": care_recipient.id,
            "scheduledTime": payload.scheduled_time.isoformat(),
            "minutesBefore": str(offset),
        }

        user_ids = await self.store.active_recipients(care_recipient.id)
        outgoing = []
        for user_id, user in await self.recipients_with_users(user_ids):
            at = format_time(payload.scheduled_time, self.zone_for(user, care_recipient))
            what = f"{medication.name} ({medication.dosage})"

            if offset == 0:
                title = f"Time for {name}'s Medication"
                body = f"{what} is due now."
            elif offset == MEDICATION_HIGH_PRIORITY_OFFSET:
                title = "Medication in 5 Minutes"
                body = f"{name} needs {what} at {at}."
            else:
                title = "Medication Reminder"
                body = f"{name} needs {what} in {offset} minutes ({at})."

            outgoing.append(OutgoingNotification(
                user_id=user_id,
                idempotency_key=key,
                title=title,
                body=body,
                data=data,
                priority=priority,
            ))
        return outgoing
