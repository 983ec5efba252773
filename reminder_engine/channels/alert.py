"""
Operator alert sink (Slack-compatible incoming webhook).
"""
import asyncio
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from reminder_engine.config import AlertConfig
from reminder_engine.constants import (
    ALERT_TIMEOUT_SECONDS,
    ALERT_MAX_RETRIES,
    ALERT_INITIAL_BACKOFF_SECONDS,
    ALERT_BACKOFF_MULTIPLIER,
)


class AlertSink:
    """
    Posts structured alerts to a webhook.

    Best-effort: post() retries with exponential backoff and only logs when
    every attempt fails.
    """

    def __init__(self, config: AlertConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.webhook_url)

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=ALERT_TIMEOUT_SECONDS)
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def post(self, message: Dict[str, Any]) -> bool:
        """
        Post a webhook message with exponential backoff retry.

        Args:
            message: Slack-style message body (text and/or blocks)

        Returns:
            True if the webhook accepted the message
        """
        if not self.enabled:
            return False

        if self.config.channel and "channel" not in message:
            message = {**message, "channel": self.config.channel}

        backoff = ALERT_INITIAL_BACKOFF_SECONDS
        last_error = None

        for attempt in range(1, ALERT_MAX_RETRIES + 1):
            try:
                async with self.session.post(self.config.webhook_url, json=message) as response:
                    if 200 <= response.status < 300:
                        logger.debug("Alert webhook sent successfully")
                        return True
                    response_text = await response.text()
                    last_error = f"HTTP {response.status}: {response_text[:200]}"
                    logger.warning(f"Alert webhook failed (attempt {attempt}/{ALERT_MAX_RETRIES}): {last_error}")
            except asyncio.CancelledError:
                raise  # Don't retry on cancellation
            except Exception as e:
                last_error = str(e)
                logger.warning(f"Alert webhook failed (attempt {attempt}/{ALERT_MAX_RETRIES}): {last_error}")

            if attempt < ALERT_MAX_RETRIES:
                await asyncio.sleep(backoff)
                backoff *= ALERT_BACKOFF_MULTIPLIER

        logger.error(f"Failed to send alert after {ALERT_MAX_RETRIES} attempts: {last_error}")
        return False


def dead_letter_alert(
    category: str,
    job_id: str,
    error: str,
    error_kind: str,
    attempts: int,
) -> Dict[str, Any]:
    """Slack block message describing a dead-lettered job."""
    return {
        "text": f"Job {job_id} failed permanently ({category})",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": ":rotating_light: Job Failed Permanently"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Queue:*\n{category}"},
                    {"type": "mrkdwn", "text": f"*Job ID:*\n{job_id}"},
                    {"type": "mrkdwn", "text": f"*Attempts:*\n{attempts}"},
                    {"type": "mrkdwn", "text": f"*Kind:*\n{error_kind}"},
                ],
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:*\n```{error[:2500]}```"},
            },
        ],
    }
