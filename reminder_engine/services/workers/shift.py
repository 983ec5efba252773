"""
Caregiver shift reminder worker.
"""
from dataclasses import dataclass
from typing import List, Optional

from reminder_engine.broker import JobCategory
from reminder_engine.models import CaregiverShift, CareRecipient, User
from reminder_engine.models.enums import NotificationType, Priority, ShiftStatus
from reminder_engine.schemas.jobs import ShiftReminderJob
from reminder_engine.services.domain_store import EntityKind
from reminder_engine.services.workers.base import CategoryWorker, OutgoingNotification, NOT_ACTIVE
from reminder_engine.utils.formatting import format_time


def shift_idempotency_key(shift_id: str, offset: int) -> str:
    return f"shift-{shift_id}-{offset}"


@dataclass
class ShiftContext:
    shift: CaregiverShift
    care_recipient: CareRecipient
    caregiver: Optional[User]


class ShiftReminderWorker(CategoryWorker[ShiftReminderJob]):
    """Reminds the assigned caregiver that their shift is about to start."""

    category = JobCategory.SHIFT
    schema = ShiftReminderJob
    notification_type = NotificationType.SHIFT_REMINDER

    async def load(self, payload: ShiftReminderJob) -> Optional[ShiftContext]:
        shift = await self.store.find_entity(EntityKind.SHIFT, payload.shift_id)
        if shift is None:
            return None
        care_recipient = await self.store.find_entity(EntityKind.CARE_RECIPIENT, shift.care_recipient_id)
        if care_recipient is None:
            return None
        caregiver = await self.store.find_entity(EntityKind.USER, shift.caregiver_id)
        return ShiftContext(shift, care_recipient, caregiver)

    def skip_reason(self, payload: ShiftReminderJob, context: ShiftContext) -> Optional[str]:
        if context.shift.status != ShiftStatus.SCHEDULED.value:
            return NOT_ACTIVE
        return None

    async def build_notifications(self, payload: ShiftReminderJob, context: ShiftContext) -> List[OutgoingNotification]:
        shift = context.shift
        offset = payload.minutes_before
        name = context.care_recipient.display_name
        at = format_time(shift.start_time, self.zone_for(context.caregiver, context.care_recipient))

        if offset == 60:
            title = "Shift Starting in 1 Hour"
            body = f"Your caregiving shift for {name} starts at {at}."
        else:
            title = "Shift Starting Soon"
            body = f"Your caregiving shift for {name} starts in {offset} minutes ({at})."

        # The caregiver on the shift, whoever is assigned now
        return [OutgoingNotification(
            user_id=shift.caregiver_id,
            idempotency_key=shift_idempotency_key(shift.id, offset),
            title=title,
            body=body,
            data={
                "shiftId": shift.id,
                "careRecipientId": context.care_recipient.id,
                "startTime": shift.start_time.isoformat(),
                "minutesBefore": str(offset),
            },
            priority=Priority.HIGH,
        )]
