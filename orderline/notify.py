"""
Customer notifications sent when an order is confirmed.
Email and SMS are attempted concurrently and independently; each channel's outcome is
collected on its own and nothing is raised to the caller or retried.
"""
import asyncio
import html
import logging
from dataclasses import dataclass

from orderline import aws_clients
from orderline.config import settings
from orderline.metrics import notifications_total
from orderline.schemas import Order

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class NotificationResult:
    channel: str
    outcome: str
    message_id: str | None = None
    error: str | None = None


def tracking_url(short_id: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/order/{short_id}"


async def send_order_confirmed_email(to: str, name: str, short_id: str) -> NotificationResult:
    if not settings.email_from:
        logger.warning("EMAIL_FROM not set; skipping email for order %s", short_id)
        return NotificationResult(channel="email", outcome=SKIPPED)

    url = tracking_url(short_id)
    body_html = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>Your order <b>{html.escape(short_id)}</b> is confirmed.</p>"
        f'<p>Track status here: <a href="{html.escape(url)}">{html.escape(url)}</a></p>'
    )
    body_text = f"Hi {name},\n\nYour order {short_id} is confirmed.\nTrack status here: {url}\n"
    message_id = await aws_clients.send_email(to, f"Your order {short_id} is confirmed", body_html, body_text)
    return NotificationResult(channel="email", outcome=SENT, message_id=message_id)


async def send_order_confirmed_sms(phone: str, short_id: str) -> NotificationResult:
    if not settings.sms_enabled:
        logger.warning("SMS disabled; skipping SMS for order %s", short_id)
        return NotificationResult(channel="sms", outcome=SKIPPED)

    message = f"Your order {short_id} is confirmed. Track it: {tracking_url(short_id)}"
    message_id = await aws_clients.send_sms(phone, message)
    return NotificationResult(channel="sms", outcome=SENT, message_id=message_id)


async def dispatch_order_confirmed(order: Order) -> list[NotificationResult]:
    """Attempt both channels; a failure in one never affects the other."""
    channels = ("email", "sms")
    outcomes = await asyncio.gather(
        send_order_confirmed_email(order.email, order.name, order.short_id),
        send_order_confirmed_sms(order.phone, order.short_id),
        return_exceptions=True,
    )
    results: list[NotificationResult] = []
    for channel, outcome in zip(channels, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("Order %s: %s notification failed: %s", order.short_id, channel, outcome, exc_info=outcome)
            result = NotificationResult(channel=channel, outcome=FAILED, error=str(outcome))
        else:
            result = outcome
        notifications_total.labels(channel=channel, outcome=result.outcome).inc()
        results.append(result)
    return results
