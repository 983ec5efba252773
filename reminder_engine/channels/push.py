"""
Push notification sink (HTTP push gateway).
"""
from typing import Dict, Optional

from reminder_engine.channels.base import BaseChannel, SendOutcome
from reminder_engine.config import PushConfig

# Gateway responses meaning the device token is no longer registered
GONE_STATUSES = (404, 410)


class PushChannel(BaseChannel):
    """Sends push messages to registered device/browser endpoints."""

    name = "Push"

    def __init__(self, config: PushConfig, **kwargs):
        super().__init__(**kwargs)
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.gateway_url)

    async def send(
        self,
        endpoint: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
        priority: str = "normal",
    ) -> SendOutcome:
        """
        Send one push message.

        Args:
            endpoint: Registered push endpoint/token
            title: Notification title
            body: Notification body
            data: String key/value data delivered to the app
            priority: "normal" or "high"

        Returns:
            OK, GONE (endpoint should be deleted) or ERROR
        """
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        payload = {
            "to": endpoint,
            "notification": {"title": title, "body": body},
            "data": data or {},
            "priority": priority,
            "urgent": priority == "high",
        }
        return await self._post(
            self.config.gateway_url,
            destination=endpoint[-12:],
            json=payload,
            headers=headers,
            gone_statuses=GONE_STATUSES,
        )
