"""E-mail webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from utility_signup.config import settings
from utility_signup.domain.exceptions import NotificationFailure
from utility_signup.infrastructure.observability.metrics import email_latency_histogram, notification_failure_counter


class EmailClient:
    """Client for handing completion e-mails to the mail delivery service"""

    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url or settings.email_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds
        self.transport = transport

    async def send_completion_email(self, tenant_email: str, summary: Dict[str, Any]) -> None:
        """
        Deliver a registration-complete e-mail.

        Up to `max_retries` attempts. 5xx responses and network errors are
        retried after base * 2^(attempt-1) seconds (1s, 2s, 4s, 8s with the
        defaults); a 4xx means the webhook refused the message and is not
        retried.

        Args:
            tenant_email: Recipient address
            summary: Subject, HTML body and contract details

        Raises:
            NotificationFailure: on a 4xx or once the attempts run out
        """
        payload = {"to": tenant_email, "subject": summary["subject"], "html": summary["body"], "metadata": summary}
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    with email_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                    if response.status_code < 500:
                        response.raise_for_status()
                        return
                    error = f"webhook returned {response.status_code}"
                except httpx.HTTPStatusError as e:
                    notification_failure_counter.inc()
                    raise NotificationFailure(f"Completion e-mail to {tenant_email} rejected: {e}") from e
                except httpx.RequestError as e:
                    error = f"{type(e).__name__}: {e}"

                notification_failure_counter.inc()
                if attempt == self.max_retries:
                    raise NotificationFailure(
                        f"Completion e-mail to {tenant_email} failed after {attempt} attempts: {error}"
                    )
                await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
