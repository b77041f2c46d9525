"""Email transports — SendGrid v3 delivery over aiohttp."""

from __future__ import annotations

import abc
import json
import time
from typing import Any

import aiohttp
import structlog

from sitewarden.core.config import EmailConfig
from sitewarden.notify.exceptions import EmailConfigError
from sitewarden.notify.types import SendResult

logger = structlog.get_logger(__name__)


class EmailTransport(abc.ABC):
    """Base class for email delivery."""

    @property
    def is_configured(self) -> bool:
        return True

    @abc.abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        """Send one email.  Delivery failures are returned, not raised."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class DisabledTransport(EmailTransport):
    """Stand-in used when email delivery is switched off; every send fails."""

    @property
    def is_configured(self) -> bool:
        return False

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        logger.info("email_disabled_skip", to=to, subject=subject)
        return SendResult(success=False, error="Email delivery is disabled")


class SendGridTransport(EmailTransport):
    """Delivers mail through the SendGrid v3 ``mail/send`` endpoint."""

    def __init__(self, config: EmailConfig) -> None:
        api_key = config.api_key.get_secret_value()
        if not api_key:
            raise EmailConfigError("SendGrid API key not configured (email.api_key)")
        self._api_key = api_key
        self._api_url = config.api_url
        self._from_email = config.from_email
        self._from_name = config.from_name
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _build_payload(self, to: str, subject: str, html: str, text: str) -> dict[str, Any]:
        sender: dict[str, str] = {"email": self._from_email}
        if self._from_name:
            sender["name"] = self._from_name
        return {
            "personalizations": [{"to": [{"email": to}]}],
            "from": sender,
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
        }

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        payload = self._build_payload(to, subject, html, text)

        try:
            session = self._get_session()
            async with session.post(self._api_url, json=payload, headers=headers) as resp:
                if 200 <= resp.status < 300:
                    message_id = resp.headers.get("x-message-id") or f"sg_{int(time.time() * 1000)}"
                    return SendResult(success=True, message_id=message_id)
                body = await resp.text()
                error = _sendgrid_error(body) or f"HTTP {resp.status}"
                logger.warning(
                    "sendgrid_send_failed",
                    status=resp.status,
                    to=to,
                    error=error,
                )
                return SendResult(success=False, error=error)
        except Exception as exc:
            logger.exception("sendgrid_send_error", to=to)
            return SendResult(success=False, error=str(exc) or type(exc).__name__)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


def _sendgrid_error(body: str) -> str | None:
    """First ``errors[].message`` from a SendGrid error body, if any."""
    try:
        data = json.loads(body)
    except ValueError:
        return body[:200] or None
    errors = data.get("errors") if isinstance(data, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = errors[0].get("message")
        if message:
            return str(message)
    return body[:200] or None
