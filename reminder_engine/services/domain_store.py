"""
Domain store gateway: the narrow read/write surface the engine needs over
persisted entities.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError, OperationalError, DisconnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reminder_engine.database import ping as ping_database
from reminder_engine.models import (
    User,
    FamilyMember,
    CareRecipient,
    Medication,
    MedicationLog,
    Appointment,
    CaregiverShift,
    Notification,
    PushSubscription,
    SchedulerRun,
)
from reminder_engine.models.enums import AppointmentStatus, ShiftStatus, MemberRole
from reminder_engine.utils.errors import TransientError


class EntityKind(str, Enum):
    MEDICATION = "medication"
    APPOINTMENT = "appointment"
    SHIFT = "shift"
    CARE_RECIPIENT = "care_recipient"
    USER = "user"


_MODELS = {
    EntityKind.MEDICATION: Medication,
    EntityKind.APPOINTMENT: Appointment,
    EntityKind.SHIFT: CaregiverShift,
    EntityKind.CARE_RECIPIENT: CareRecipient,
    EntityKind.USER: User,
}

# Appointment statuses that still warrant a reminder
ACTIONABLE_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)


class DomainStore:
    """
    Reads and writes domain rows for the scheduler and workers.

    Connectivity failures surface as TransientError so callers can retry;
    a duplicate notification insert returns None instead of raising.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, DisconnectionError, OSError) as e:
            raise TransientError(f"Domain store connection failed: {e}") from e

    async def ping(self) -> bool:
        return await ping_database(self._session_factory)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def find_entity(self, kind: EntityKind, entity_id: str) -> Optional[Any]:
        """Load one entity by id, or None if it does not exist."""
        async with self._session() as session:
            return await session.get(_MODELS[kind], entity_id)

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        async with self._session() as session:
            result = await session.execute(select(User).where(User.id.in_(ids)))
            return {user.id: user for user in result.scalars()}

    async def active_recipients(self, care_recipient_id: str, roles: Optional[Iterable[MemberRole]] = None) -> List[str]:
        """
        User ids of active members of the care recipient's family.

        Args:
            care_recipient_id: Care recipient whose family is notified
            roles: Restrict to these member roles (all roles when None)
        """
        async with self._session() as session:
            stmt = (
                select(FamilyMember.user_id)
                .join(CareRecipient, CareRecipient.family_id == FamilyMember.family_id)
                .where(CareRecipient.id == care_recipient_id, FamilyMember.is_active.is_(True))
                .order_by(FamilyMember.user_id)
            )
            if roles is not None:
                stmt = stmt.where(FamilyMember.role.in_([role.value for role in roles]))
            result = await session.execute(stmt)
            return list(result.scalars())

    # ------------------------------------------------------------------
    # Scheduler scans
    # ------------------------------------------------------------------

    async def active_medications(self) -> List[Tuple[Medication, CareRecipient]]:
        async with self._session() as session:
            result = await session.execute(
                select(Medication, CareRecipient)
                .join(CareRecipient, CareRecipient.id == Medication.care_recipient_id)
                .where(Medication.is_active.is_(True))
            )
            return [tuple(row) for row in result.all()]

    async def upcoming_appointments(self, start: datetime, end: datetime) -> List[Tuple[Appointment, CareRecipient]]:
        """Actionable appointments starting in [start, end]."""
        async with self._session() as session:
            result = await session.execute(
                select(Appointment, CareRecipient)
                .join(CareRecipient, CareRecipient.id == Appointment.care_recipient_id)
                .where(
                    Appointment.status.in_(ACTIONABLE_APPOINTMENT_STATUSES),
                    Appointment.start_time >= start,
                    Appointment.start_time <= end,
                )
            )
            return [tuple(row) for row in result.all()]

    async def upcoming_shifts(self, start: datetime, end: datetime) -> List[CaregiverShift]:
        """Scheduled shifts starting in [start, end]."""
        async with self._session() as session:
            result = await session.execute(
                select(CaregiverShift).where(
                    CaregiverShift.status == ShiftStatus.SCHEDULED.value,
                    CaregiverShift.start_time >= start,
                    CaregiverShift.start_time <= end,
                )
            )
            return list(result.scalars())

    async def refill_candidates(self) -> List[Tuple[Medication, CareRecipient]]:
        """Active medications whose supply is at or below the refill threshold."""
        async with self._session() as session:
            result = await session.execute(
                select(Medication, CareRecipient)
                .join(CareRecipient, CareRecipient.id == Medication.care_recipient_id)
                .where(
                    Medication.is_active.is_(True),
                    Medication.current_supply.is_not(None),
                    Medication.refill_at.is_not(None),
                    Medication.current_supply <= Medication.refill_at,
                )
            )
            return [tuple(row) for row in result.all()]

    async def dose_logged(self, medication_id: str, scheduled_time: datetime) -> bool:
        """True if a dose log exists for the scheduled minute."""
        minute = scheduled_time.replace(second=0, microsecond=0)
        async with self._session() as session:
            result = await session.execute(
                select(MedicationLog.id)
                .where(
                    MedicationLog.medication_id == medication_id,
                    MedicationLog.scheduled_time >= minute,
                    MedicationLog.scheduled_time < minute + timedelta(minutes=1),
                )
                .limit(1)
            )
            return result.first() is not None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def find_notification(self, user_id: str, notification_type: str, idempotency_key: str) -> Optional[Notification]:
        async with self._session() as session:
            result = await session.execute(
                select(Notification).where(
                    Notification.user_id == user_id,
                    Notification.type == notification_type,
                    Notification.idempotency_key == idempotency_key,
                )
            )
            return result.scalars().first()

    async def create_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        body: str,
        idempotency_key: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        """
        Insert a notification.

        Returns:
            The new row, or None if one already exists for
            (user_id, type, idempotency_key)
        """
        payload = dict(data or {})
        payload["idempotencyKey"] = idempotency_key

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title[:100],
            body=body,
            data=payload,
            idempotency_key=idempotency_key,
        )
        async with self._session() as session:
            session.add(notification)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Notification {idempotency_key} for user {user_id} already exists")
                return None
        return notification

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    async def push_subscriptions(self, user_id: str) -> List[PushSubscription]:
        async with self._session() as session:
            result = await session.execute(
                select(PushSubscription).where(PushSubscription.user_id == user_id).order_by(PushSubscription.created_at)
            )
            return list(result.scalars())

    async def delete_push_subscription(self, subscription_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(PushSubscription).where(PushSubscription.id == subscription_id))
            await session.commit()
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Scheduler run log
    # ------------------------------------------------------------------

    async def start_scheduler_run(self, job_name: str, started_at: datetime) -> int:
        run = SchedulerRun(job_name=job_name, status="STARTED", started_at=started_at)
        async with self._session() as session:
            session.add(run)
            await session.commit()
            return run.id

    async def finish_scheduler_run(
        self,
        run_id: int,
        status: str,
        completed_at: datetime,
        duration_ms: int,
        items_processed: int = 0,
        error: Optional[str] = None,
    ):
        async with self._session() as session:
            await session.execute(
                update(SchedulerRun)
                .where(SchedulerRun.id == run_id)
                .values(
                    status=status,
                    completed_at=completed_at,
                    duration_ms=duration_ms,
                    items_processed=items_processed,
                    error=error,
                )
            )
            await session.commit()
