"""Mail API client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Protocol

import httpx

from billing_gateway.config import settings
from billing_gateway.domain.exceptions import MailDeliveryError
from billing_gateway.infrastructure.observability.metrics import mailer_failure_counter, mailer_latency_histogram


class Mailer(Protocol):
    """Outbound e-mail port; raises on delivery failure, returns nothing on success"""

    async def send_email(self, to: str, subject: str, body: str) -> None: ...


class HttpMailer:
    """Client for a transactional mail HTTP API"""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url or settings.mailer_api_url
        self.api_key = api_key if api_key is not None else settings.mailer_api_key
        self.sender = sender or settings.mail_from
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.mailer_max_retries
        self.backoff_base = settings.mailer_backoff_base
        self._transport = transport

    async def send_email(self, to: str, subject: str, body: str) -> None:
        """
        Send one plain-text e-mail.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base... between attempts
        - Retries on 5xx responses and network failures
        - 4xx responses are not retried: the message itself was rejected

        Raises:
            MailDeliveryError: when the message could not be delivered
        """
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {"from": self.sender, "to": [to], "subject": subject, "text": body}

        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                try:
                    with mailer_latency_histogram.time():
                        response = await client.post(self.api_url, json=payload, headers=headers)
                        response.raise_for_status()
                    logging.info("Email sent", extra={"recipient": to})
                    return

                except httpx.HTTPStatusError as e:
                    attempt += 1
                    mailer_failure_counter.inc()
                    status = e.response.status_code
                    if status < 500 or attempt >= self.max_retries:
                        raise MailDeliveryError(f"Mail API error: {status}") from e

                except httpx.RequestError as e:
                    attempt += 1
                    mailer_failure_counter.inc()
                    if attempt >= self.max_retries:
                        raise MailDeliveryError(f"Mail API unreachable: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)
