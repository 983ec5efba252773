"""
Appointment reminder worker.
"""
from dataclasses import dataclass
from typing import List, Optional

from reminder_engine.broker import JobCategory
from reminder_engine.constants import TRANSPORT_REMINDER_OFFSET
from reminder_engine.models import Appointment, CareRecipient, User
from reminder_engine.models.enums import NotificationType, Priority
from reminder_engine.schemas.jobs import AppointmentReminderJob
from reminder_engine.services.domain_store import EntityKind, ACTIONABLE_APPOINTMENT_STATUSES
from reminder_engine.services.workers.base import CategoryWorker, OutgoingNotification, NOT_ACTIVE
from reminder_engine.utils.formatting import format_time, format_date


def appointment_idempotency_key(appointment_id: str, offset: int) -> str:
    return f"apt-{appointment_id}-{offset}"


@dataclass
class AppointmentContext:
    appointment: Appointment
    care_recipient: CareRecipient
    transport_user: Optional[User] = None


class AppointmentReminderWorker(CategoryWorker[AppointmentReminderJob]):
    """
    Reminds the family about an appointment.

    At the one-hour mark the assigned transport person also gets a
    separate reminder of their own.
    """

    category = JobCategory.APPOINTMENT
    schema = AppointmentReminderJob
    notification_type = NotificationType.APPOINTMENT_REMINDER

    async def load(self, payload: AppointmentReminderJob) -> Optional[AppointmentContext]:
        appointment = await self.store.find_entity(EntityKind.APPOINTMENT, payload.appointment_id)
        if appointment is None:
            return None
        care_recipient = await self.store.find_entity(EntityKind.CARE_RECIPIENT, appointment.care_recipient_id)
        if care_recipient is None:
            return None
        transport_user = None
        if appointment.transport_user_id:
            transport_user = await self.store.find_entity(EntityKind.USER, appointment.transport_user_id)
        return AppointmentContext(appointment, care_recipient, transport_user)

    def skip_reason(self, payload: AppointmentReminderJob, context: AppointmentContext) -> Optional[str]:
        if context.appointment.status not in ACTIONABLE_APPOINTMENT_STATUSES:
            return NOT_ACTIVE
        return None

    async def build_notifications(
        self, payload: AppointmentReminderJob, context: AppointmentContext
    ) -> List[OutgoingNotification]:
        appointment = context.appointment
        care_recipient = context.care_recipient
        transport_user = context.transport_user
        offset = payload.minutes_before
        name = care_recipient.display_name
        key = appointment_idempotency_key(appointment.id, offset)
        priority = Priority.HIGH if offset <= TRANSPORT_REMINDER_OFFSET else Priority.NORMAL
        data = {
            "appointmentId": appointment.id,
            "careRecipientId": care_recipient.id,
            "appointmentTime": appointment.start_time.isoformat(),
            "minutesBefore": str(offset),
        }

        user_ids = await self.store.active_recipients(care_recipient.id)
        outgoing = []
        for user_id, user in await self.recipients_with_users(user_ids):
            zone = self.zone_for(user, care_recipient)
            at = format_time(appointment.start_time, zone)

            if offset >= 1440:
                title = "Appointment Tomorrow"
                body = f"{name} has {appointment.title} on {format_date(appointment.start_time, zone)} at {at}."
            elif offset >= 60:
                title = "Appointment in 1 Hour"
                body = f"{name}'s {appointment.title} starts at {at}."
            else:
                title = "Appointment Soon"
                body = f"{name}'s {appointment.title} starts in {offset} minutes."

            if appointment.location:
                body += f" Location: {appointment.location}."
            if transport_user and offset <= TRANSPORT_REMINDER_OFFSET:
                body += f" Transport: {transport_user.full_name}."

            outgoing.append(OutgoingNotification(
                user_id=user_id,
                idempotency_key=key,
                title=title,
                body=body,
                data=data,
                priority=priority,
            ))

        if transport_user and offset == TRANSPORT_REMINDER_OFFSET:
            zone = self.zone_for(transport_user, care_recipient)
            body = f"You're driving {name} to {appointment.title} at {format_time(appointment.start_time, zone)}."
            if appointment.location:
                body += f" Location: {appointment.location}."
            outgoing.append(OutgoingNotification(
                user_id=transport_user.id,
                idempotency_key=f"{key}-transport",
                title="Transport Reminder",
                body=body,
                data={**data, "role": "transport"},
                priority=Priority.HIGH,
            ))

        return outgoing
