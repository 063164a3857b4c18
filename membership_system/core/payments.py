"""
Payment creation and payment queries.

Creation is deliberately two-phase: the pending row is committed before
Midtrans is called, so a gateway failure leaves a pending row behind. The
result says which of the two outcomes happened instead of raising after a
silent insert.
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from membership_system.database.models import Payment, PaymentStatus, User
from membership_system.integrations.midtrans_client import MidtransClient
from membership_system.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CreationOutcome(str, Enum):
    CREATED = "created"
    CREATED_BUT_GATEWAY_FAILED = "created_but_gateway_failed"


@dataclass
class PaymentCreationResult:
    """
    Tagged result of payment creation.

    ``payment`` is always a persisted pending row. ``redirect_url`` and
    ``snap_token`` are set only for CREATED; ``error`` only for
    CREATED_BUT_GATEWAY_FAILED.
    """

    outcome: CreationOutcome
    payment: Payment
    redirect_url: Optional[str] = None
    snap_token: Optional[str] = None
    error: Optional[ExternalServiceError] = None

    @property
    def checkout_issued(self) -> bool:
        return self.outcome is CreationOutcome.CREATED


def generate_order_id(user_id: int) -> str:
    """
    ORDER-<epoch millis>-<user id>.

    Two payments for one user in the same millisecond collide; the unique
    constraint on the column turns that into a ConflictError.
    """
    return f"ORDER-{int(time.time() * 1000)}-{user_id}"


class PaymentService:
    """Creates Midtrans checkouts and answers payment queries."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        midtrans_client: Optional[MidtransClient] = None,
    ):
        self.settings = settings or get_settings()
        self.midtrans_client = midtrans_client or MidtransClient(self.settings)

    async def create_payment(
        self, user_id: int, amount: Decimal | float, db: AsyncSession
    ) -> PaymentCreationResult:
        """
        Insert a pending payment, then open a Snap checkout for it.

        Args:
            user_id: Paying member
            amount: Positive amount in rupiah
            db: Database session

        Returns:
            PaymentCreationResult: CREATED with a redirect URL, or
            CREATED_BUT_GATEWAY_FAILED with the gateway error

        Raises:
            ValidationError: If the amount is not positive (no row created)
            NotFoundError: If the user does not exist (no row created)
            ConflictError: If the order id collides (no row created)
        """
        amount_decimal = Decimal(str(amount))
        if amount_decimal <= 0:
            raise ValidationError("Amount must be positive")

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found")

        order_id = generate_order_id(user_id)
        payment = Payment(
            user_id=user_id,
            midtrans_order_id=order_id,
            midtrans_transaction_id=None,
            amount=amount_decimal,
            status=PaymentStatus.PENDING,
            payment_type=None,
            transaction_time=None,
            settlement_time=None,
        )
        db.add(payment)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.error("payment_order_id_collision", order_id=order_id, user_id=user_id)
            raise ConflictError(f"Order id {order_id} already exists")

        logger.info(
            "payment_record_created",
            payment_id=payment.id,
            order_id=order_id,
            user_id=user_id,
            amount=str(amount_decimal),
        )

        try:
            transaction = await self.midtrans_client.create_transaction(
                order_id=order_id,
                amount=amount_decimal,
                customer_email=user.email,
                customer_name=user.contact_name,
                customer_phone=user.contact_phone,
                item_name=f"Membership - {user.institution_name}",
            )
        except ExternalServiceError as e:
            logger.error(
                "payment_checkout_not_issued",
                payment_id=payment.id,
                order_id=order_id,
                error=str(e),
            )
            metrics.record_payment_created(CreationOutcome.CREATED_BUT_GATEWAY_FAILED.value)
            return PaymentCreationResult(
                outcome=CreationOutcome.CREATED_BUT_GATEWAY_FAILED,
                payment=payment,
                error=e,
            )

        metrics.record_payment_created(CreationOutcome.CREATED.value)
        logger.info("payment_checkout_issued", payment_id=payment.id, order_id=order_id)
        return PaymentCreationResult(
            outcome=CreationOutcome.CREATED,
            payment=payment,
            redirect_url=transaction.redirect_url,
            snap_token=transaction.token,
        )

    async def list_user_payments(self, user_id: int, db: AsyncSession) -> List[Payment]:
        """Payments of one user, newest first."""
        stmt = (
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_all_payments(self, db: AsyncSession) -> List[Payment]:
        """Every payment, newest first."""
        stmt = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_payment(self, payment_id: int, db: AsyncSession) -> Payment:
        payment = await db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment with ID {payment_id} not found")
        return payment
