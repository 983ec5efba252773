"""
Outbound channel sinks for notification delivery and operator alerts.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING

from reminder_engine.channels.base import BaseChannel, SendOutcome
from reminder_engine.channels.push import PushChannel
from reminder_engine.channels.email import EmailChannel
from reminder_engine.channels.sms import SmsChannel
from reminder_engine.channels.alert import AlertSink, dead_letter_alert

if TYPE_CHECKING:
    from reminder_engine.config import Settings

__all__ = [
    "BaseChannel",
    "SendOutcome",
    "PushChannel",
    "EmailChannel",
    "SmsChannel",
    "AlertSink",
    "dead_letter_alert",
    "ChannelSinks",
    "create_channel_sinks",
]


@dataclass
class ChannelSinks:
    """The set of sinks the dispatch worker sends through."""
    push: PushChannel
    email: EmailChannel
    sms: SmsChannel

    async def close(self):
        await self.push.close()
        await self.email.close()
        await self.sms.close()


def create_channel_sinks(config: "Settings") -> ChannelSinks:
    """
    Factory function to create channel sinks from settings.

    Args:
        config: Settings instance

    Returns:
        ChannelSinks with one sink per delivery channel
    """
    return ChannelSinks(
        push=PushChannel(config.push),
        email=EmailChannel(config.email),
        sms=SmsChannel(config.sms),
    )
