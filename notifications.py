"""
Transactional email.

Messages go out through the email provider's HTTP API. Callers schedule
these functions as background tasks; a failure is logged and reported as
False, never raised into the request that triggered it.
"""
import logging
from typing import List, Optional

import requests

import config

logger = logging.getLogger("tailorspace.notifications")

STATUS_MESSAGES = {
    "pickup_scheduled": "A runner has been assigned and will collect your items.",
    "collected": "We have collected your garments.",
    "in_progress": "Your tailor has started work on your order.",
    "ready": "Your alterations are finished and passed quality checks.",
    "out_for_delivery": "Your order is on its way back to you.",
    "delivered": "Your order has been delivered.",
    "completed": "Your order is complete. Thanks for using TailorSpace!",
    "cancelled": "Your order has been cancelled.",
}

REMINDER_SUBJECTS = {
    1: "You left something in your basket",
    2: "Your alterations are still waiting",
    3: "Last reminder: finish your booking",
}


def format_price(pence: int) -> str:
    return f"{config.CURRENCY_SYMBOL}{pence / 100:.2f}"


def send_email(to: str, subject: str, html: str) -> bool:
    if not config.RESEND_API_KEY:
        logger.info("Email provider not configured; skipping %r to %s", subject, to)
        return False
    try:
        resp = requests.post(
            config.RESEND_API_URL,
            headers={"Authorization": f"Bearer {config.RESEND_API_KEY}"},
            json={
                "from": config.EMAIL_FROM,
                "to": to,
                "reply_to": config.EMAIL_REPLY_TO,
                "subject": subject,
                "html": html,
            },
            timeout=10,
        )
    except requests.RequestException as e:
        logger.error("Failed to send %r to %s: %s", subject, to, e)
        return False
    if resp.status_code >= 300:
        logger.error("Email provider rejected %r to %s: %s %s", subject, to, resp.status_code, resp.text[:200])
        return False
    logger.info("Sent %r to %s", subject, to)
    return True


def send_welcome(to: str, full_name: str) -> bool:
    html = (
        f"<p>Hi {full_name},</p>"
        "<p>Welcome to TailorSpace. Book your first alteration and we will collect it from your door.</p>"
        f'<p><a href="{config.APP_URL}/book">Book now</a></p>'
    )
    return send_email(to, "Welcome to TailorSpace", html)


def send_order_confirmation(to: str, full_name: str, order_number: str, total: int,
                            item_count: int, pickup_date: str, pickup_slot: str) -> bool:
    html = (
        f"<p>Hi {full_name},</p>"
        f"<p>Thanks for your order <strong>{order_number}</strong>.</p>"
        f"<p>{item_count} item(s), total {format_price(total)}.</p>"
        f"<p>Pickup: {pickup_date} ({pickup_slot}).</p>"
    )
    return send_email(to, f"Order Confirmed - {order_number}", html)


def send_status_update(to: str, full_name: str, order_number: str, status: str) -> bool:
    message = STATUS_MESSAGES.get(status, status.replace("_", " "))
    html = (
        f"<p>Hi {full_name},</p>"
        f"<p>Order <strong>{order_number}</strong>: {message}</p>"
        f'<p><a href="{config.APP_URL}/orders">Track your order</a></p>'
    )
    return send_email(to, f"Order {order_number} update", html)


def send_cart_reminder(to: str, full_name: str, items: List[dict], subtotal: int,
                       recovery_url: str, unsubscribe_url: str, sequence_number: int) -> bool:
    lines = "".join(
        f"<li>{item['service_name']} x{item['quantity']} ({format_price(item['service_price'])})</li>"
        for item in items
    )
    html = (
        f"<p>Hi {full_name},</p>"
        f"<ul>{lines}</ul>"
        f"<p>Subtotal {format_price(subtotal)}.</p>"
        f'<p><a href="{recovery_url}">Pick up where you left off</a></p>'
        f'<p style="font-size:12px"><a href="{unsubscribe_url}">Stop these reminders</a></p>'
    )
    subject: Optional[str] = REMINDER_SUBJECTS.get(sequence_number)
    return send_email(to, subject or REMINDER_SUBJECTS[1], html)
