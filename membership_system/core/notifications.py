"""
Best-effort WhatsApp notifications.

The dispatcher never raises for bad input or provider trouble: every
outcome is reported as a NotificationResult.
"""
import re
import secrets
import time
from dataclasses import dataclass
from typing import Optional

import structlog

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import ExternalServiceError
from membership_system.database.models import Payment, User
from membership_system.integrations.pdf_renderer import format_rupiah
from membership_system.integrations.whatsapp_client import WhatsAppClient
from membership_system.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_MESSAGE_LENGTH = 4096
PHONE_PATTERN = re.compile(r"^\+\d{10,15}$")

REQUIRED = "Phone number and message are required"
EMPTY_MESSAGE = "Message cannot be empty"
MESSAGE_TOO_LONG = f"Message too long (maximum {MAX_MESSAGE_LENGTH} characters)"
INVALID_PHONE = "Invalid phone number format"


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def normalize_phone_number(phone_number: str) -> str:
    """
    Normalise a loosely formatted Indonesian number to +<country><number>.

    08xx -> +628xx, 62xx -> +62xx, +xx kept, anything else gets +62.
    """
    stripped = phone_number.strip()
    digits = re.sub(r"\D", "", stripped)
    if stripped.startswith("+"):
        return f"+{digits}"
    if digits.startswith("08"):
        return f"+62{digits[1:]}"
    if digits.startswith("62"):
        return f"+{digits}"
    return f"+62{digits}"


def validate_notification(phone_number: str, message: str) -> str:
    """
    Check a notification request and return the normalised phone number.

    Raises:
        ValueError: With the user-facing reason, checked in a fixed order
    """
    if not phone_number or not message:
        raise ValueError(REQUIRED)
    if not message.strip():
        raise ValueError(EMPTY_MESSAGE)
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValueError(MESSAGE_TOO_LONG)

    normalized = normalize_phone_number(phone_number)
    if not PHONE_PATTERN.match(normalized):
        raise ValueError(INVALID_PHONE)
    return normalized


def dry_run_message_id() -> str:
    return f"wa_msg_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def payment_confirmation_message(user: User, payment: Payment) -> str:
    return (
        f"Selamat! Pembayaran keanggotaan {user.institution_name} sebesar "
        f"{format_rupiah(payment.amount)} (order {payment.midtrans_order_id}) telah berhasil. "
        "Status keanggotaan Anda kini aktif."
    )


class NotificationDispatcher:
    """Validates, normalises and delivers WhatsApp text messages."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[WhatsAppClient] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or WhatsAppClient(self.settings)

    async def send(self, phone_number: str, message: str) -> NotificationResult:
        """
        Send one message.

        Without WhatsApp credentials the message is only logged and a
        synthetic ``wa_msg_...`` id is returned.
        """
        try:
            normalized = validate_notification(phone_number, message)
        except ValueError as e:
            metrics.record_notification("rejected")
            logger.warning("notification_rejected", reason=str(e))
            return NotificationResult(success=False, error=str(e))

        if not self.client.enabled:
            message_id = dry_run_message_id()
            metrics.record_notification("dry_run")
            logger.info(
                "notification_dry_run",
                phone_number=normalized,
                message_id=message_id,
                message_length=len(message),
            )
            return NotificationResult(success=True, message_id=message_id)

        try:
            message_id = await self.client.send_text(normalized, message)
        except ExternalServiceError as e:
            metrics.record_notification("failed")
            logger.error("notification_failed", phone_number=normalized, error=e.message)
            return NotificationResult(success=False, error=e.message)

        metrics.record_notification("sent")
        logger.info("notification_sent", phone_number=normalized, message_id=message_id)
        return NotificationResult(success=True, message_id=message_id)

    async def notify_payment_settled(self, payment: Payment, user: User) -> None:
        """Paid-payment hook: tell the member's contact person."""
        result = await self.send(user.contact_phone, payment_confirmation_message(user, payment))
        if not result.success:
            logger.warning(
                "payment_notification_not_delivered",
                payment_id=payment.id,
                user_id=user.id,
                error=result.error,
            )
