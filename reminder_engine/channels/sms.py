"""
SMS sink using the Twilio Messages REST API.
"""
import aiohttp

from reminder_engine.channels.base import BaseChannel, SendOutcome
from reminder_engine.config import SmsConfig

# Twilio rejects message bodies longer than this
MAX_SMS_LENGTH = 1600


class SmsChannel(BaseChannel):
    """Sends text messages through Twilio."""

    name = "SMS"

    def __init__(self, config: SmsConfig, **kwargs):
        super().__init__(**kwargs)
        self.config = config

    @property
    def enabled(self) -> bool:
        return (
            self.config.enabled
            and bool(self.config.account_sid)
            and bool(self.config.auth_token)
            and bool(self.config.from_number)
        )

    async def send(self, phone: str, text: str) -> SendOutcome:
        url = f"{self.config.api_base_url.rstrip('/')}/Accounts/{self.config.account_sid}/Messages.json"
        return await self._post(
            url,
            destination=phone,
            data={"To": phone, "From": self.config.from_number, "Body": text[:MAX_SMS_LENGTH]},
            auth=aiohttp.BasicAuth(self.config.account_sid, self.config.auth_token),
        )
