"""Notification service for settlement emails.

Emails are sent through SendGrid. Sending never raises: a failed email is
logged and reported as ``False``.
"""

import logging
from decimal import Decimal
from typing import Any

import httpx

from rentalpay.config import settings

logger = logging.getLogger(__name__)


def _money(cents: int, currency: str) -> str:
    return f"{(Decimal(cents) / 100):,.2f} {currency}"


class NotificationService:
    """Service for sending settlement notifications."""

    # Notification types
    TRIP_SETTLED = "trip_settled"
    CHARGES_RESOLVED = "charges_resolved_by_staff"
    REFUND_PROCESSED = "refund_processed"
    TRANSFER_REVERSAL_FAILED = "transfer_reversal_failed"

    def __init__(self) -> None:
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> bool:
        """Send an email via SendGrid.

        Args:
            to_email: Recipient email
            subject: Email subject
            html_content: HTML body
            text_content: Plain text body

        Returns:
            bool: True if sent successfully
        """
        if not settings.sendgrid_api_key:
            logger.info("SendGrid not configured; skipping email '%s' to %s", subject, to_email)
            return False

        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {
                "email": settings.email_from_address,
                "name": settings.email_from_name,
            },
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
        }
        if text_content:
            payload["content"].insert(0, {"type": "text/plain", "value": text_content})

        try:
            response = await self.http_client.post(
                "https://api.sendgrid.com/v3/mail/send",
                headers={
                    "Authorization": f"Bearer {settings.sendgrid_api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.warning("SendGrid request failed for %s: %s", to_email, e)
            return False

        if response.status_code not in (200, 202):
            logger.warning(
                "SendGrid rejected email to %s: %s %s",
                to_email,
                response.status_code,
                response.text[:200],
            )
            return False
        return True

    def compose(self, event: dict[str, Any]) -> tuple[str, str] | None:
        """Subject and body for a settlement event payload, or None if the guest isn't told."""
        event_type = event.get("event_type")
        currency = event.get("currency", settings.currency)

        if event_type == self.TRIP_SETTLED:
            return "Your trip has ended", event["message"]
        if event_type == self.CHARGES_RESOLVED:
            charged = event.get("charged_amount", 0)
            original = event.get("original_amount", 0)
            if charged:
                body = (
                    f"Our team reviewed your trip charges of {_money(original, currency)}. "
                    f"{_money(charged, currency)} has been charged to your payment method."
                )
            else:
                body = (
                    f"Our team reviewed your trip charges of {_money(original, currency)}. "
                    "No further payment is due."
                )
            return "Your trip charges have been reviewed", body
        if event_type == self.REFUND_PROCESSED:
            return (
                "Your refund is on its way",
                f"A refund of {_money(event['amount'], currency)} has been issued to your "
                "original payment method. It can take 5-10 business days to appear.",
            )
        return None

    async def notify_settlement_event(self, event: dict[str, Any]) -> bool:
        """Email the guest about a settlement event."""
        if event.get("event_type") == self.TRANSFER_REVERSAL_FAILED:
            logger.error(
                "Manual follow-up needed: transfer %s reversal of %s failed for refund %s: %s",
                event.get("transfer_id"),
                event.get("amount"),
                event.get("refund_request_id"),
                event.get("error"),
            )
            return False

        to_email = event.get("guest_email")
        composed = self.compose(event)
        if not to_email or composed is None:
            return False

        subject, body = composed
        return await self.send_email(
            to_email=to_email,
            subject=subject,
            html_content=f"<p>{body}</p>",
            text_content=body,
        )


notification_service = NotificationService()
