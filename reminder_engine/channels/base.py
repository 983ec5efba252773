"""
Base channel sink interface.
"""
import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from reminder_engine.constants import CHANNEL_TIMEOUT_SECONDS


class SendOutcome(str, Enum):
    """Result of one send to one destination."""
    OK = "ok"
    GONE = "gone"  # destination permanently invalid, drop the registration
    ERROR = "error"


class BaseChannel(ABC):
    """
    Abstract base class for outbound channel sinks.

    Sinks never raise on delivery problems; they log and return
    SendOutcome.ERROR (or GONE) so one bad destination cannot fail a job.
    """

    name: str = "channel"

    def __init__(self, timeout: float = CHANNEL_TIMEOUT_SECONDS):
        self._timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether the sink is configured and switched on."""
        pass

    async def _post(
        self,
        url: str,
        destination: str,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
        gone_statuses: tuple = (),
    ) -> SendOutcome:
        """
        POST once and map the response to an outcome.

        Args:
            url: Provider endpoint
            destination: Recipient identifier, for logging only
            json: JSON body
            data: Form body
            headers: Request headers
            auth: Basic auth credentials
            gone_statuses: Statuses meaning the destination no longer exists

        Returns:
            SendOutcome
        """
        try:
            async with self.session.post(url, json=json, data=data, headers=headers, auth=auth) as response:
                if 200 <= response.status < 300:
                    logger.debug(f"{self.name} sent to {destination}")
                    return SendOutcome.OK
                response_text = await response.text()
                if response.status in gone_statuses:
                    logger.info(f"{self.name} destination {destination} is gone (HTTP {response.status})")
                    return SendOutcome.GONE
                logger.warning(
                    f"{self.name} send to {destination} failed: HTTP {response.status}: "
                    f"{self._describe_failure(response_text)}"
                )
                return SendOutcome.ERROR
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{self.name} send to {destination} failed: {type(e).__name__}: {e}")
            return SendOutcome.ERROR

    def _describe_failure(self, body: str) -> str:
        return body[:200]
