"""
Email sink using the SendGrid v3 mail API.
"""
import json
from typing import Any, Optional

from reminder_engine.channels.base import BaseChannel, SendOutcome
from reminder_engine.config import EmailConfig


def extract_sendgrid_error_details(body: Any) -> Optional[str]:
    """Return a human readable description for a SendGrid error payload."""
    if body in (None, ""):
        return None

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if isinstance(body, str):
        body = body.strip()
        if not body:
            return None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return body
    else:
        parsed = body

    if isinstance(parsed, dict):
        errors = parsed.get("errors")
        if isinstance(errors, list):
            messages = []
            for item in errors:
                if not isinstance(item, dict):
                    continue
                message = item.get("message")
                field = item.get("field")
                if message and field:
                    messages.append(f"{field}: {message}")
                elif message:
                    messages.append(str(message))
            if messages:
                return "; ".join(messages)
        return json.dumps(parsed)

    return str(parsed)


class EmailChannel(BaseChannel):
    """Sends plain-text email through SendGrid."""

    name = "Email"

    def __init__(self, config: EmailConfig, **kwargs):
        super().__init__(**kwargs)
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    async def send(self, address: str, subject: str, body: str) -> SendOutcome:
        payload = {
            "personalizations": [{"to": [{"email": address}]}],
            "from": {"email": self.config.from_address, "name": self.config.from_name},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        return await self._post(
            self.config.api_url,
            destination=address,
            json=payload,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )

    def _describe_failure(self, body: str) -> str:
        return (extract_sendgrid_error_details(body) or "")[:200]
