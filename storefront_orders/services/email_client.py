"""
HTTP client for the transactional email service
"""
import httpx
from dataclasses import dataclass
from typing import Optional
from opentelemetry import trace
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailClient:
    """Client for the email delivery API; sending never raises"""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        """
        Send an HTML email

        Returns:
            EmailResult with success=False and the error on any failure
        """
        with tracer.start_as_current_span("email_client.send") as span:
            span.set_attribute("email.subject", subject)

            try:
                response = await self.client.post(
                    self.api_url,
                    json={"from": self.sender, "to": to, "subject": subject, "html": html},
                    headers={"Authorization": f"Bearer {self.api_key}"}
                )
            except httpx.HTTPError as e:
                logger.error(f"Failed to send email '{subject}': {e}")
                span.record_exception(e)
                return EmailResult(success=False, error=str(e))

            span.set_attribute("http.status_code", response.status_code)

            if response.status_code >= 400:
                logger.error(f"Email service error: {response.status_code}")
                return EmailResult(success=False, error=f"Email service returned {response.status_code}")

            try:
                message_id = response.json().get("id")
            except ValueError:
                message_id = None
            logger.info(f"Email '{subject}' sent")
            return EmailResult(success=True, message_id=message_id)

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
