"""
Shared processing shape for category workers.

Every category job goes through the same steps:

1. validate the payload
2. re-read the source entity (gone -> skip)
3. check it is still actionable (not -> skip)
4. build one notification per recipient
5. create each notification once per idempotency key and queue its
   dispatch jobs under ids derived from the same key
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from loguru import logger

from reminder_engine.broker import Job, JobCategory, QueueBroker, dispatch_job_id
from reminder_engine.config import ReminderConfig
from reminder_engine.models import User, CareRecipient
from reminder_engine.models.enums import NotificationChannel, NotificationType, Priority
from reminder_engine.schemas.jobs import JobPayload, NotificationJob, validate_job_payload, dump_payload
from reminder_engine.services.domain_store import DomainStore
from reminder_engine.utils.formatting import resolve_zone

P = TypeVar("P", bound=JobPayload)

# Skip reasons
ENTITY_NOT_FOUND = "entity_not_found"
NOT_ACTIVE = "not_active"
NO_SUPPLY_TRACKING = "no_supply_tracking"
SUPPLY_ADEQUATE = "supply_adequate"
NO_RECIPIENTS = "no_recipients"


@dataclass
class ProcessResult:
    """Outcome of a category job that did not raise."""
    skipped: bool = False
    reason: Optional[str] = None
    notified: int = 0
    duplicates: int = 0

    @property
    def success(self) -> bool:
        return not self.skipped

    @classmethod
    def skip(cls, reason: str) -> "ProcessResult":
        return cls(skipped=True, reason=reason)


@dataclass
class OutgoingNotification:
    """A notification for one recipient, before it is stored."""
    user_id: str
    idempotency_key: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    channels: Tuple[NotificationChannel, ...] = (NotificationChannel.PUSH,)


class CategoryWorker(ABC, Generic[P]):
    """
    Base class for medication, appointment, shift and refill workers.

    Subclasses declare their category, payload schema and notification type,
    and implement load/skip_reason/build_notifications.
    """

    category: JobCategory
    schema: Type[P]
    notification_type: NotificationType

    def __init__(self, store: DomainStore, broker: QueueBroker, reminders: Optional[ReminderConfig] = None):
        self.store = store
        self.broker = broker
        self.reminders = reminders or ReminderConfig()

    async def __call__(self, job: Job) -> ProcessResult:
        return await self.process(job)

    async def process(self, job: Job) -> ProcessResult:
        """
        Process one category job.

        Returns:
            ProcessResult (skips are results, not errors)

        Raises:
            ValidationError: Payload does not match the schema
            TransientError: Domain store or queue unavailable
        """
        payload = validate_job_payload(self.schema, job.payload, self.schema.__name__)

        context = await self.load(payload)
        if context is None:
            logger.info(f"{self.category.value} job {job.id}: entity not found, skipping")
            return ProcessResult.skip(ENTITY_NOT_FOUND)

        reason = self.skip_reason(payload, context)
        if reason:
            logger.info(f"{self.category.value} job {job.id}: skipping ({reason})")
            return ProcessResult.skip(reason)

        outgoing = await self.build_notifications(payload, context)
        if not outgoing:
            logger.info(f"{self.category.value} job {job.id}: no recipients")
            return ProcessResult.skip(NO_RECIPIENTS)

        result = ProcessResult()
        for item in outgoing:
            if await self.deliver(item):
                result.notified += 1
            else:
                result.duplicates += 1

        logger.info(
            f"{self.category.value} job {job.id}: notified {result.notified} recipient(s)"
            + (f", {result.duplicates} already notified" if result.duplicates else "")
        )
        return result

    async def deliver(self, item: OutgoingNotification) -> bool:
        """
        Create the notification and queue its dispatch jobs.

        Returns:
            False if the recipient already had this notification
        """
        notification_type = self.notification_type.value
        existing = await self.store.find_notification(item.user_id, notification_type, item.idempotency_key)
        if existing is not None:
            logger.debug(f"Notification {item.idempotency_key} already sent to {item.user_id}")
            return False

        notification = await self.store.create_notification(
            user_id=item.user_id,
            notification_type=notification_type,
            title=item.title,
            body=item.body,
            idempotency_key=item.idempotency_key,
            data=item.data,
        )
        if notification is None:
            # Lost the insert race to another worker
            return False

        for channel in item.channels:
            job = NotificationJob(
                channel=channel,
                user_id=item.user_id,
                title=item.title[:100],
                body=item.body[:500],
                data={**item.data, "type": notification_type, "notificationId": notification.id},
                priority=item.priority,
            )
            await self.broker.enqueue(
                JobCategory.NOTIFICATION,
                dispatch_job_id(channel, item.idempotency_key, item.user_id),
                dump_payload(job),
            )
        return True

    def zone_for(self, user: Optional[User], care_recipient: Optional[CareRecipient]):
        """Recipient's zone, else the care recipient's, else the configured default."""
        return resolve_zone(
            user.timezone if user else None,
            care_recipient.timezone if care_recipient else None,
            default=self.reminders.default_timezone,
        )

    async def recipients_with_users(self, user_ids: List[str]) -> List[Tuple[str, Optional[User]]]:
        users = await self.store.get_users(user_ids)
        return [(user_id, users.get(user_id)) for user_id in user_ids]

    @abstractmethod
    async def load(self, payload: P) -> Optional[Any]:
        """Re-read the source entities; None when the entity is gone."""

    @abstractmethod
    def skip_reason(self, payload: P, context: Any) -> Optional[str]:
        """Reason the entity no longer needs a reminder, or None."""

    @abstractmethod
    async def build_notifications(self, payload: P, context: Any) -> List[OutgoingNotification]:
        """One OutgoingNotification per recipient."""
