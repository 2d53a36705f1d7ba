"""
Email Transport — the outbound delivery boundary.

Contract: recipient, subject, HTML body, optional attachments in;
success flag + provider message id out. A transport never raises for a
rejected send; it reports ``success=False`` and the Mailer decides.

Implementations:
  ResendEmailTransport   — Resend HTTP API over httpx
  InMemoryEmailTransport — records every send, for development and tests
"""
from __future__ import annotations

import abc
import uuid
import structlog
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from models.schemas import EmailAttachment

logger = structlog.get_logger()


@dataclass
class OutboundEmail:
    sender: str
    to: str
    subject: str
    html: str
    attachments: list[EmailAttachment] = field(default_factory=list)
    reply_to: Optional[str] = None


@dataclass
class SendResult:
    success: bool
    message_id: str = ""
    error: str = ""


class EmailTransport(abc.ABC):

    @abc.abstractmethod
    async def send(self, email: OutboundEmail) -> SendResult:
        ...

    async def close(self) -> None:
        pass


class ResendEmailTransport(EmailTransport):
    """Sends through https://resend.com. Transport errors are retried twice."""

    def __init__(self, api_key: str, api_url: str = "https://api.resend.com"):
        self._api_key = api_key
        self.api_url = api_url.rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=5),
        reraise=True,
    )
    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post("/emails", json=body)

    async def send(self, email: OutboundEmail) -> SendResult:
        body: dict[str, Any] = {
            "from": email.sender,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
        }
        if email.reply_to:
            body["reply_to"] = email.reply_to
        if email.attachments:
            body["attachments"] = [
                {"filename": a.filename, "content": a.content, "content_type": a.content_type}
                for a in email.attachments
            ]

        try:
            resp = await self._post(body)
        except httpx.TransportError as e:
            logger.error("resend_transport_error", to=email.to, error=str(e))
            return SendResult(success=False, error=str(e))

        if resp.status_code >= 400:
            logger.error("resend_api_error",
                         status=resp.status_code,
                         body=resp.text[:500],
                         to=email.to)
            return SendResult(success=False, error=f"HTTP {resp.status_code}")

        message_id = resp.json().get("id", "")
        logger.info("email_sent", to=email.to, subject=email.subject, message_id=message_id)
        return SendResult(success=True, message_id=message_id)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()


class InMemoryEmailTransport(EmailTransport):
    """
    Keeps sent mail in ``self.sent``. ``fail_next`` makes that many upcoming
    sends report failure, which lets tests drive the retry path.
    """

    def __init__(self, fail_next: int = 0):
        self.sent: list[OutboundEmail] = []
        self.fail_next = fail_next

    async def send(self, email: OutboundEmail) -> SendResult:
        if self.fail_next > 0:
            self.fail_next -= 1
            return SendResult(success=False, error="simulated failure")
        self.sent.append(email)
        return SendResult(success=True, message_id=f"mem_{uuid.uuid4().hex[:12]}")

    def sent_to(self, address: str) -> list[OutboundEmail]:
        return [e for e in self.sent if e.to == address]
