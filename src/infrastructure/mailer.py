"""
Outbound mail boundary.

Mail is fire-and-forget from the core's point of view: ``deliver_quietly``
never raises, it logs and reports ``False``.  Without an API key the
``LogMailer`` just writes the message to the log.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMail:
    recipient: str
    subject: str
    body: str


class Mailer(ABC):
    @abstractmethod
    async def send(self, mail: OutgoingMail) -> bool: ...


class LogMailer(Mailer):
    async def send(self, mail: OutgoingMail) -> bool:
        logger.info("Mail to %s: %s", mail.recipient, mail.subject)
        return True


class HttpMailer(Mailer):
    """JSON-over-HTTPS mail provider (Resend-compatible payload)."""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        sender: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    async def send(self, mail: OutgoingMail) -> bool:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            resp = await client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [mail.recipient],
                    "subject": mail.subject,
                    "text": mail.body,
                },
            )
        return resp.is_success


async def deliver_quietly(mailer: Mailer, mail: OutgoingMail) -> bool:
    try:
        ok = await mailer.send(mail)
    except Exception:
        logger.exception("Mail delivery to %s failed", mail.recipient)
        return False
    if not ok:
        logger.warning("Mail provider rejected message to %s", mail.recipient)
    return ok


def build_mailer(api_key: Optional[str], api_url: str, sender: str) -> Mailer:
    if api_key:
        return HttpMailer(api_key, api_url, sender)
    return LogMailer()
