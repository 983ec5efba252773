"""
Refill alert worker.
"""
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from reminder_engine.broker import JobCategory
from reminder_engine.constants import REFILL_URGENT_SUPPLY
from reminder_engine.models import Medication, CareRecipient
from reminder_engine.models.enums import MemberRole, NotificationChannel, NotificationType, Priority
from reminder_engine.schemas.jobs import RefillAlertJob
from reminder_engine.services.domain_store import EntityKind
from reminder_engine.services.workers.base import (
    CategoryWorker,
    OutgoingNotification,
    NOT_ACTIVE,
    NO_SUPPLY_TRACKING,
    SUPPLY_ADEQUATE,
)

# Members who can act on a refill; viewers are not bothered
REFILL_ROLES = (MemberRole.ADMIN, MemberRole.CAREGIVER)


def refill_idempotency_key(medication_id: str, check_date: date) -> str:
    return f"refill-{medication_id}-{check_date.isoformat()}"


@dataclass
class RefillContext:
    medication: Medication
    care_recipient: CareRecipient


class RefillAlertWorker(CategoryWorker[RefillAlertJob]):
    """
    Alerts admins and caregivers when a medication is running low.

    Supply at or below REFILL_URGENT_SUPPLY is urgent: high priority and an
    email on top of the push notification.
    """

    category = JobCategory.REFILL
    schema = RefillAlertJob
    notification_type = NotificationType.REFILL_ALERT

    async def load(self, payload: RefillAlertJob) -> Optional[RefillContext]:
        medication = await self.store.find_entity(EntityKind.MEDICATION, payload.medication_id)
        if medication is None:
            return None
        care_recipient = await self.store.find_entity(EntityKind.CARE_RECIPIENT, medication.care_recipient_id)
        if care_recipient is None:
            return None
        return RefillContext(medication, care_recipient)

    def skip_reason(self, payload: RefillAlertJob, context: RefillContext) -> Optional[str]:
        medication = context.medication
        if not medication.is_active:
            return NOT_ACTIVE
        if medication.current_supply is None or medication.refill_at is None:
            return NO_SUPPLY_TRACKING
        if medication.current_supply > medication.refill_at:
            return SUPPLY_ADEQUATE
        return None

    async def build_notifications(self, payload: RefillAlertJob, context: RefillContext) -> List[OutgoingNotification]:
        medication = context.medication
        name = context.care_recipient.display_name
        supply = medication.current_supply
        urgent = supply <= REFILL_URGENT_SUPPLY

        if urgent:
            title = f"Urgent: {medication.name} Running Out"
            body = (
                f"{name}'s {medication.name} supply is critically low ({supply} remaining). "
                f"Please refill immediately."
            )
            channels = (NotificationChannel.PUSH, NotificationChannel.EMAIL)
        else:
            title = f"Refill Needed: {medication.name}"
            body = (
                f"{name}'s {medication.name} supply is low ({supply} remaining, "
                f"refill threshold: {medication.refill_at}). Time to order a refill."
            )
            channels = (NotificationChannel.PUSH,)

        key = refill_idempotency_key(medication.id, payload.check_date)
        data = {
            "medicationId": medication.id,
            "careRecipientId": context.care_recipient.id,
            "currentSupply": str(supply),
            "refillAt": str(medication.refill_at),
            "urgencyLevel": "urgent" if urgent else "low",
        }

        user_ids = await self.store.active_recipients(context.care_recipient.id, roles=REFILL_ROLES)
        return [
            OutgoingNotification(
                user_id=user_id,
                idempotency_key=key,
                title=title,
                body=body,
                data=data,
                priority=Priority.HIGH if urgent else Priority.NORMAL,
                channels=channels,
            )
            for user_id in user_ids
        ]
