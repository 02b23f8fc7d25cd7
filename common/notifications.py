"""
RMShop - Notification Helper
=============================
Fire-and-forget email/SMS relay for OTPs, reset tokens and order events.
In dev mode (no NOTIFY_API_KEY), messages are logged only.

The core never blocks on these beyond issuing the call: every failure is
logged and reported as False.
"""

import logging

import requests

from config.settings import NOTIFY_API_URL, NOTIFY_API_KEY

logger = logging.getLogger("rmshop.notifications")

ORDER_EVENT_MESSAGES = {
    "order_placed": "Your order #{order_id} has been placed.",
    "payment_confirmed": "Payment received for order #{order_id}.",
    "order_cancelled": "Your order #{order_id} has been cancelled.",
    "cancellation_requested": "Cancellation of order #{order_id} is awaiting review.",
    "return_approved": "Your return for order #{order_id} was approved.",
    "return_rejected": "Your return for order #{order_id} was rejected.",
    "refund_completed": "Refund for order #{order_id} was credited to your wallet.",
}


def _dispatch(recipient: str, subject: str, text: str) -> bool:
    if not recipient:
        return False

    if not NOTIFY_API_KEY or not NOTIFY_API_URL:
        logger.info(f"Notification skipped (no API key): {recipient} -> {subject}")
        return False

    try:
        response = requests.post(
            NOTIFY_API_URL,
            json={"to": recipient, "subject": subject, "text": text},
            headers={"Authorization": f"Bearer {NOTIFY_API_KEY}"},
            timeout=5,
        )
        if response.status_code in (200, 201, 202):
            logger.info(f"Notification sent to {recipient}: {subject}")
            return True
        logger.error(f"Notification API error: {response.status_code} - {response.text}")
        return False

    except requests.RequestException as e:
        logger.error(f"Notification failed: {e}")
        return False


def send_otp(email: str, otp: str) -> bool:
    return _dispatch(email, "Your verification code", f"Your RMShop verification code is {otp}.")


def send_reset_token(email: str, token: str) -> bool:
    return _dispatch(email, "Password reset", f"Use this token to reset your password: {token}")


def notify_order_update(email: str, order_id: int, event_type: str) -> bool:
    """
    Send notification about an order event.

    Args:
        email: Recipient address
        order_id: Order ID
        event_type: One of ORDER_EVENT_MESSAGES keys

    Returns:
        True if the relay accepted it, False otherwise (never raises)
    """
    template = ORDER_EVENT_MESSAGES.get(event_type, "Update on order #{order_id}.")
    text = template.format(order_id=order_id)
    return _dispatch(email, f"Order #{order_id}", text)
