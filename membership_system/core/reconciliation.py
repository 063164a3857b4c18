"""
Midtrans notification reconciliation.

Turns a verified Midtrans HTTP notification into a Payment transition and,
for settled payments, a membership activation:

1. Verify the SHA-512 signature (the only authentication of the caller)
2. Lock the Payment row for the order id
3. Map transaction_status onto the internal PaymentStatus
4. Decide whether the notification may be applied (transition policy)
5. Update Payment, activate the member if paid, append to the ledger
6. Commit once, then run post-commit handlers

Two transition policies exist. ``faithful`` overwrites the payment on every
verified notification, so replays can move a paid payment back to pending.
``hardened`` only transitions pending payments and drops notifications whose
fingerprint was already applied.
"""
import asyncio
import time
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from membership_system.core.schemas import MidtransNotification
from membership_system.database.models import (
    MembershipStatus,
    Payment,
    PaymentStatus,
    User,
    WebhookEvent,
    utcnow,
)
from membership_system.integrations.midtrans_client import verify_signature
from membership_system.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TRANSACTION_STATUS_MAP: Dict[str, PaymentStatus] = {
    "settlement": PaymentStatus.PAID,
    "capture": PaymentStatus.PAID,
    "deny": PaymentStatus.FAILED,
    "cancel": PaymentStatus.FAILED,
    "failure": PaymentStatus.FAILED,
    "expire": PaymentStatus.EXPIRED,
}

# Midtrans reports wall-clock times in Western Indonesia Time without an offset.
MIDTRANS_TZ = timezone(timedelta(hours=7))

PaidHandler = Callable[[Payment, User], Awaitable[None]]


class TransitionPolicy(str, Enum):
    FAITHFUL = "faithful"
    HARDENED = "hardened"


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class ReconciliationResult:
    payment: Payment
    outcome: WebhookOutcome
    mapped_status: PaymentStatus
    membership_activated: bool = False


def map_transaction_status(transaction_status: Optional[str]) -> PaymentStatus:
    """Gateway vocabulary to PaymentStatus; anything unrecognised stays pending."""
    return TRANSACTION_STATUS_MAP.get(transaction_status or "", PaymentStatus.PENDING)


def parse_gateway_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Midtrans timestamp ("2024-01-15 10:30:00").

    Missing or empty values become None. Naive values are taken as GMT+7.

    Raises:
        ValidationError: If the value is not an ISO-like timestamp
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid gateway timestamp: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=MIDTRANS_TZ)
    return parsed


def _status_label(transaction_status: str) -> str:
    # Bounded label set for metrics; the raw value is logged instead.
    return transaction_status if transaction_status in TRANSACTION_STATUS_MAP else "other"


class WebhookReconciler:
    """
    Applies Midtrans notifications to payments and memberships.

    Notifications for the same order id are serialised in-process with a
    per-order lock and in the database with a row lock on the payment.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        policy: Optional[TransitionPolicy] = None,
    ):
        """
        Initialize reconciler.

        Args:
            settings: Settings holding the server key and default policy
            policy: Override for settings.webhook_transition_policy
        """
        self.settings = settings or get_settings()
        self.policy = TransitionPolicy(policy or self.settings.webhook_transition_policy)
        self._order_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._paid_handlers: List[PaidHandler] = []

        logger.info("webhook_reconciler_initialized", policy=self.policy.value)

    def register_paid_handler(self, handler: PaidHandler) -> None:
        """
        Register a coroutine run after a payment newly reconciles to paid.

        Handlers run after the commit; their failures are logged and never
        undo or fail the reconciliation.
        """
        self._paid_handlers.append(handler)
        logger.info("paid_handler_registered", handler=getattr(handler, "__name__", repr(handler)))

    def verify_signature(self, notification: MidtransNotification) -> None:
        """
        Check the notification signature against the configured server key.

        Raises:
            ExternalServiceError: If no server key is configured
            UnauthorizedError: If the signature does not match exactly
        """
        server_key = self.settings.midtrans_server_key
        if not server_key:
            logger.error("midtrans_server_key_missing", order_id=notification.order_id)
            raise ExternalServiceError("Midtrans server key not configured")

        if not verify_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            notification.signature_key,
            server_key,
        ):
            logger.warning("webhook_signature_invalid", order_id=notification.order_id)
            raise UnauthorizedError("Invalid signature")

    def _order_lock(self, order_id: str) -> asyncio.Lock:
        lock = self._order_locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._order_locks[order_id] = lock
        return lock

    async def _already_applied(
        self, db: AsyncSession, notification: MidtransNotification
    ) -> bool:
        stmt = select(WebhookEvent.id).where(
            WebhookEvent.order_id == notification.order_id,
            WebhookEvent.transaction_status == notification.transaction_status,
            WebhookEvent.outcome == WebhookOutcome.APPLIED.value,
        )
        if notification.transaction_id:
            stmt = stmt.where(WebhookEvent.transaction_id == notification.transaction_id)
        else:
            stmt = stmt.where(WebhookEvent.transaction_id.is_(None))
        result = await db.execute(stmt.limit(1))
        return result.first() is not None

    async def _decide(
        self, db: AsyncSession, payment: Payment, notification: MidtransNotification
    ) -> WebhookOutcome:
        if self.policy is TransitionPolicy.FAITHFUL:
            return WebhookOutcome.APPLIED
        if await self._already_applied(db, notification):
            return WebhookOutcome.DUPLICATE
        if payment.status != PaymentStatus.PENDING:
            return WebhookOutcome.IGNORED
        return WebhookOutcome.APPLIED

    async def reconcile(
        self, notification: MidtransNotification, db: AsyncSession
    ) -> ReconciliationResult:
        """
        Verify and apply one Midtrans notification.

        Args:
            notification: Parsed notification body
            db: Database session

        Returns:
            ReconciliationResult: The payment as it stands after this call

        Raises:
            UnauthorizedError: Signature mismatch (nothing written)
            NotFoundError: No payment for the order id (nothing written)
            ExternalServiceError: Server key not configured (nothing written)
            ValidationError: Unparseable transaction/settlement time (nothing written)
        """
        start_time = time.time()
        order_id = notification.order_id
        status_label = _status_label(notification.transaction_status)

        logger.info(
            "webhook_received",
            order_id=order_id,
            transaction_status=notification.transaction_status,
            transaction_id=notification.transaction_id,
        )

        try:
            self.verify_signature(notification)
        except (UnauthorizedError, ExternalServiceError):
            metrics.record_webhook_event(status_label, "rejected")
            raise

        transaction_time = parse_gateway_time(notification.transaction_time)
        settlement_time = parse_gateway_time(notification.settlement_time)
        new_status = map_transaction_status(notification.transaction_status)
        user: Optional[User] = None
        activated = False

        async with self._order_lock(order_id):
            try:
                result = await db.execute(
                    select(Payment).where(Payment.midtrans_order_id == order_id).with_for_update()
                )
                payment = result.scalar_one_or_none()
                if payment is None:
                    logger.warning("webhook_payment_not_found", order_id=order_id)
                    raise NotFoundError(f"Payment with order_id {order_id} not found")

                previous_status = payment.status
                outcome = await self._decide(db, payment, notification)

                if outcome is WebhookOutcome.APPLIED:
                    payment.midtrans_transaction_id = notification.transaction_id or None
                    payment.status = new_status
                    payment.payment_type = notification.payment_type or None
                    payment.transaction_time = transaction_time
                    payment.settlement_time = settlement_time
                    payment.updated_at = utcnow()

                    if new_status is PaymentStatus.PAID:
                        user_result = await db.execute(
                            select(User).where(User.id == payment.user_id).with_for_update()
                        )
                        user = user_result.scalar_one_or_none()
                        if user is not None:
                            user.membership_status = MembershipStatus.ACTIVE
                            user.updated_at = utcnow()
                            activated = True

                db.add(
                    WebhookEvent(
                        payment_id=payment.id,
                        order_id=order_id,
                        transaction_id=notification.transaction_id or None,
                        transaction_status=notification.transaction_status,
                        status_code=notification.status_code,
                        gross_amount=notification.gross_amount,
                        mapped_status=new_status,
                        outcome=outcome.value,
                    )
                )
                await db.commit()
            except NotFoundError:
                await db.rollback()
                metrics.record_webhook_event(status_label, "rejected")
                raise
            except Exception:
                await db.rollback()
                raise

        duration = time.time() - start_time
        metrics.record_webhook_event(status_label, outcome.value, duration)

        logger.info(
            "webhook_reconciled",
            order_id=order_id,
            payment_id=payment.id,
            outcome=outcome.value,
            previous_status=PaymentStatus(previous_status).value,
            status=PaymentStatus(payment.status).value,
            policy=self.policy.value,
            duration_seconds=duration,
        )

        if activated and user is not None:
            metrics.record_membership_activation()
            logger.info(
                "membership_activated",
                user_id=user.id,
                payment_id=payment.id,
                order_id=order_id,
            )
            await self._run_paid_handlers(payment, user)

        return ReconciliationResult(
            payment=payment,
            outcome=outcome,
            mapped_status=new_status,
            membership_activated=activated,
        )

    async def _run_paid_handlers(self, payment: Payment, user: User) -> None:
        for handler in self._paid_handlers:
            try:
                await handler(payment, user)
            except Exception as e:
                logger.error(
                    "paid_handler_failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    payment_id=payment.id,
                    error=str(e),
                )
