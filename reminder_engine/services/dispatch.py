"""
Notification dispatch worker: delivers one notification over one channel.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional, assert_never

from loguru import logger

from reminder_engine.broker import Job
from reminder_engine.channels import ChannelSinks, SendOutcome
from reminder_engine.models.enums import NotificationChannel
from reminder_engine.schemas.jobs import NotificationJob, validate_job_payload
from reminder_engine.services.domain_store import DomainStore, EntityKind
from reminder_engine.utils.errors import TransientError


@dataclass
class DispatchResult:
    """Per-channel delivery summary."""
    channel: NotificationChannel
    sent: int = 0
    failed: int = 0
    removed: int = 0
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class NotificationDispatcher:
    """
    Sends dispatch jobs through the push, email and SMS sinks.

    A failing endpoint never fails the job on its own; only when every
    attempted send fails is a TransientError raised so the broker retries.
    """

    def __init__(self, store: DomainStore, sinks: ChannelSinks):
        self.store = store
        self.sinks = sinks

    async def __call__(self, job: Job) -> DispatchResult:
        return await self.dispatch(job)

    async def dispatch(self, job: Job) -> DispatchResult:
        payload = validate_job_payload(NotificationJob, job.payload, "NotificationJob")

        match payload.channel:
            case NotificationChannel.PUSH:
                result = await self._send_push(payload)
            case NotificationChannel.EMAIL:
                result = await self._send_email(payload)
            case NotificationChannel.SMS:
                result = await self._send_sms(payload)
            case NotificationChannel.IN_APP:
                # The notification row is the in-app notification
                result = DispatchResult(NotificationChannel.IN_APP, skipped_reason="in_app")
            case _:
                assert_never(payload.channel)

        if result.skipped:
            logger.debug(f"{result.channel.value} dispatch for {payload.user_id} skipped: {result.skipped_reason}")
        elif result.sent == 0 and result.failed > 0:
            raise TransientError(
                f"All {result.failed} {result.channel.value} send(s) to user {payload.user_id} failed"
            )
        else:
            logger.info(
                f"{result.channel.value} dispatch for {payload.user_id}: "
                f"{result.sent} sent, {result.failed} failed, {result.removed} removed"
            )
        return result

    async def _send_push(self, payload: NotificationJob) -> DispatchResult:
        result = DispatchResult(NotificationChannel.PUSH)
        if not self.sinks.push.enabled:
            result.skipped_reason = "push_not_configured"
            return result

        subscriptions = await self.store.push_subscriptions(payload.user_id)
        if not subscriptions:
            result.skipped_reason = "no_push_subscriptions"
            return result

        outcomes = await asyncio.gather(*(
            self.sinks.push.send(
                subscription.endpoint,
                payload.title,
                payload.body,
                data=payload.data,
                priority=payload.priority.value,
            )
            for subscription in subscriptions
        ))

        for subscription, outcome in zip(subscriptions, outcomes):
            match outcome:
                case SendOutcome.OK:
                    result.sent += 1
                case SendOutcome.GONE:
                    # Cleanup must not decide the job outcome
                    try:
                        if await self.store.delete_push_subscription(subscription.id):
                            result.removed += 1
                            logger.info(f"Removed expired push subscription {subscription.id} for user {payload.user_id}")
                    except Exception as e:
                        logger.warning(f"Failed to remove push subscription {subscription.id}: {e}")
                case SendOutcome.ERROR:
                    result.failed += 1
                case _:
                    assert_never(outcome)
        return result

    async def _send_email(self, payload: NotificationJob) -> DispatchResult:
        result = DispatchResult(NotificationChannel.EMAIL)
        if not self.sinks.email.enabled:
            result.skipped_reason = "email_not_configured"
            return result

        user = await self.store.find_entity(EntityKind.USER, payload.user_id)
        if user is None or not user.email:
            result.skipped_reason = "no_email_address"
            return result

        outcome = await self.sinks.email.send(user.email, payload.title, payload.body)
        if outcome is SendOutcome.OK:
            result.sent = 1
        else:
            result.failed = 1
        return result

    async def _send_sms(self, payload: NotificationJob) -> DispatchResult:
        result = DispatchResult(NotificationChannel.SMS)
        if not self.sinks.sms.enabled:
            result.skipped_reason = "sms_not_configured"
            return result

        user = await self.store.find_entity(EntityKind.USER, payload.user_id)
        if user is None or not user.phone or not user.phone_verified:
            result.skipped_reason = "no_verified_phone"
            return result

        outcome = await self.sinks.sms.send(user.phone, f"{payload.title}: {payload.body}")
        if outcome is SendOutcome.OK:
            result.sent = 1
        else:
            result.failed = 1
        return result
