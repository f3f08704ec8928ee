"""
Email Provider (Mailjet)

Transactional mail for booking holds and confirmations, sent through the
Mailjet v3.1 send API. Built once at startup as either MailEnabled or
MailDisabled; a failed send is logged and never fails a booking.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    text: str
    html: Optional[str] = None
    to_name: Optional[str] = None
    custom_id: Optional[str] = None


class MailjetProvider:
    """Mailjet transactional provider over httpx."""

    BASE_URL = "https://api.mailjet.com/v3.1"

    def __init__(self, api_key: str, secret_key: str, sender_email: str, sender_name: str):
        self.api_key = api_key
        self.secret_key = secret_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                auth=(self.api_key, self.secret_key),
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Explicit cleanup method."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def build_payload(self, message: EmailMessage) -> dict:
        entry = {
            "From": {"Email": self.sender_email, "Name": self.sender_name},
            "To": [{"Email": message.to_email, "Name": message.to_name or message.to_email}],
            "Subject": message.subject,
            "TextPart": message.text,
        }
        if message.html:
            entry["HTMLPart"] = message.html
        if message.custom_id:
            entry["CustomID"] = message.custom_id
        return {"Messages": [entry]}

    async def send(self, message: EmailMessage) -> SendResult:
        http = await self._get_http_client()
        try:
            resp = await http.post(f"{self.BASE_URL}/send", json=self.build_payload(message))
        except httpx.HTTPError as e:
            logger.error(f"Mailjet send exception to {message.to_email}: {e}")
            return SendResult(success=False, error=str(e))

        if resp.status_code != 200:
            logger.error(f"Mailjet send failed: {resp.status_code} - {resp.text}")
            return SendResult(success=False, error=resp.text)

        messages = resp.json().get("Messages") or [{}]
        first = messages[0]
        if first.get("Status") != "success":
            return SendResult(success=False, error=str(first.get("Errors")))
        recipients = first.get("To") or [{}]
        return SendResult(success=True, message_id=str(recipients[0].get("MessageID", "")) or None)


@dataclass
class MailDisabled:
    reason: str

    async def send(self, message: EmailMessage) -> SendResult:
        logger.info(f"Email disabled ({self.reason}), not sending '{message.subject}' to {message.to_email}")
        return SendResult(success=False, error="disabled")

    async def close(self):
        return None


@dataclass
class MailEnabled:
    provider: MailjetProvider

    async def send(self, message: EmailMessage) -> SendResult:
        return await self.provider.send(message)

    async def close(self):
        await self.provider.close()


MailConfig = Union[MailDisabled, MailEnabled]


def build_mail_config(settings) -> MailConfig:
    """Created once at process start."""
    if not settings.email_enabled:
        logger.warning("MAILJET_API_KEY/MAILJET_SECRET_KEY not set - booking emails disabled")
        return MailDisabled(reason="Mailjet credentials not configured")
    return MailEnabled(MailjetProvider(
        api_key=settings.MAILJET_API_KEY,
        secret_key=settings.MAILJET_SECRET_KEY,
        sender_email=settings.MAIL_SENDER_EMAIL,
        sender_name=settings.MAIL_SENDER_NAME,
    ))
