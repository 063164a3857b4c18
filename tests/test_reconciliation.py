"""
Unit tests for Midtrans webhook reconciliation.
"""
import asyncio
import hashlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, List, Tuple

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from membership_system.config import Settings
from membership_system.core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from membership_system.core.reconciliation import (
    TransitionPolicy,
    WebhookOutcome,
    WebhookReconciler,
    map_transaction_status,
    parse_gateway_time,
)
from membership_system.database.models import (
    MembershipStatus,
    Payment,
    PaymentStatus,
    User,
    WebhookEvent,
)
from membership_system.integrations.midtrans_client import compute_signature, verify_signature

from conftest import SERVER_KEY


@pytest_asyncio.fixture
async def member(create_user: Any) -> User:
    return await create_user()


@pytest_asyncio.fixture
async def pending_payment(member: User, test_db: AsyncSession) -> Payment:
    payment = Payment(
        user_id=member.id,
        midtrans_order_id=f"ORDER-1705300000000-{member.id}",
        amount=Decimal("500000"),
        status=PaymentStatus.PENDING,
    )
    test_db.add(payment)
    await test_db.commit()
    return payment


async def ledger(db: AsyncSession) -> List[Tuple[str, str]]:
    result = await db.execute(select(WebhookEvent).order_by(WebhookEvent.id))
    return [(event.transaction_status, event.outcome) for event in result.scalars()]


async def reload(db: AsyncSession, obj: Any) -> Any:
    await db.refresh(obj)
    return obj


class TestSignature:
    """Test suite for notification signatures."""

    @pytest.mark.unit
    def test_signature_is_sha512_of_concatenation(self) -> None:
        expected = hashlib.sha512(b"ORDER-1-1" + b"200" + b"500000.00" + b"key").hexdigest()
        assert compute_signature("ORDER-1-1", "200", "500000.00", "key") == expected

    @pytest.mark.unit
    def test_verify_requires_exact_match(self) -> None:
        signature = compute_signature("ORDER-1-1", "200", "500000.00", "key")

        assert verify_signature("ORDER-1-1", "200", "500000.00", signature, "key")
        assert not verify_signature("ORDER-1-1", "200", "500000.00", signature.upper(), "key")
        assert not verify_signature("ORDER-1-1", "200", "500001.00", signature, "key")
        assert not verify_signature("ORDER-1-1", "200", "500000.00", signature, "other")

    @pytest.mark.unit
    def test_non_ascii_signature_is_a_mismatch(self) -> None:
        assert not verify_signature("ORDER-1-1", "200", "500000.00", "\u00e9" * 128, "key")


class TestStatusMapping:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "transaction_status,expected",
        [
            ("settlement", PaymentStatus.PAID),
            ("capture", PaymentStatus.PAID),
            ("deny", PaymentStatus.FAILED),
            ("cancel", PaymentStatus.FAILED),
            ("failure", PaymentStatus.FAILED),
            ("expire", PaymentStatus.EXPIRED),
            ("pending", PaymentStatus.PENDING),
            ("refund", PaymentStatus.PENDING),
            ("SETTLEMENT", PaymentStatus.PENDING),
            ("", PaymentStatus.PENDING),
            (None, PaymentStatus.PENDING),
        ],
    )
    def test_table(self, transaction_status: Any, expected: PaymentStatus) -> None:
        assert map_transaction_status(transaction_status) is expected


class TestGatewayTime:
    @pytest.mark.unit
    def test_naive_time_is_western_indonesia_time(self) -> None:
        parsed = parse_gateway_time("2024-01-15 10:30:00")

        assert parsed == datetime(2024, 1, 15, 3, 30, tzinfo=timezone.utc)
        assert parsed is not None and parsed.utcoffset() == timedelta(hours=7)

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [None, ""])
    def test_absent_time_is_none(self, value: Any) -> None:
        assert parse_gateway_time(value) is None

    @pytest.mark.unit
    def test_garbage_time_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_gateway_time("yesterday-ish")


class TestReconcileHardened:
    """Test suite for the default (hardened) transition policy."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settlement_pays_and_activates(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        """Create user, create payment, settle it: payment paid and member active."""
        notification = make_notification(
            pending_payment.midtrans_order_id,
            "settlement",
            transaction_id="9aed5972-5b6a-401e-894b-a32c91ed1a3a",
            payment_type="bank_transfer",
            transaction_time="2024-01-15 10:30:00",
            settlement_time="2024-01-15 10:35:12",
        )

        result = await WebhookReconciler(test_settings).reconcile(notification, test_db)

        assert result.outcome is WebhookOutcome.APPLIED
        assert result.membership_activated
        payment = await reload(test_db, pending_payment)
        assert payment.status == PaymentStatus.PAID
        assert payment.midtrans_transaction_id == "9aed5972-5b6a-401e-894b-a32c91ed1a3a"
        assert payment.payment_type == "bank_transfer"
        assert payment.transaction_time is not None
        assert payment.settlement_time is not None
        user = await reload(test_db, member)
        assert user.membership_status == MembershipStatus.ACTIVE
        assert await ledger(test_db) == [("settlement", "applied")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "transaction_status,expected",
        [
            ("deny", PaymentStatus.FAILED),
            ("cancel", PaymentStatus.FAILED),
            ("failure", PaymentStatus.FAILED),
            ("expire", PaymentStatus.EXPIRED),
        ],
    )
    async def test_unsuccessful_outcomes_leave_membership(
        self,
        transaction_status: str,
        expected: PaymentStatus,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        notification = make_notification(pending_payment.midtrans_order_id, transaction_status)

        result = await WebhookReconciler(test_settings).reconcile(notification, test_db)

        assert not result.membership_activated
        assert (await reload(test_db, pending_payment)).status == expected
        assert (await reload(test_db, member)).membership_status == MembershipStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_absent_optional_fields_become_null(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        notification = make_notification(pending_payment.midtrans_order_id, "pending")

        await WebhookReconciler(test_settings).reconcile(notification, test_db)

        payment = await reload(test_db, pending_payment)
        assert payment.status == PaymentStatus.PENDING
        assert payment.midtrans_transaction_id is None
        assert payment.payment_type is None
        assert payment.transaction_time is None
        assert payment.settlement_time is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_signature_mutates_nothing(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        notification = make_notification(
            pending_payment.midtrans_order_id, "settlement", server_key="wrong-key"
        )

        with pytest.raises(UnauthorizedError, match="Invalid signature"):
            await WebhookReconciler(test_settings).reconcile(notification, test_db)

        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PENDING
        assert (await reload(test_db, member)).membership_status == MembershipStatus.PENDING
        assert await ledger(test_db) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_ascii_signature_is_rejected(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        notification = make_notification(pending_payment.midtrans_order_id, "settlement")
        forged = notification.model_copy(update={"signature_key": "\u00e9" * 128})

        with pytest.raises(UnauthorizedError, match="Invalid signature"):
            await WebhookReconciler(test_settings).reconcile(forged, test_db)

        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PENDING
        assert (await reload(test_db, member)).membership_status == MembershipStatus.PENDING
        assert await ledger(test_db) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tampered_amount_fails_signature(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        notification = make_notification(pending_payment.midtrans_order_id, "settlement")
        tampered = notification.model_copy(update={"gross_amount": "1.00"})

        with pytest.raises(UnauthorizedError):
            await WebhookReconciler(test_settings).reconcile(tampered, test_db)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_order_rejected_without_side_effects(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        make_notification: Any,
    ) -> None:
        notification = make_notification("ORDER-0-0", "settlement")

        with pytest.raises(NotFoundError, match="Payment with order_id ORDER-0-0 not found"):
            await WebhookReconciler(test_settings).reconcile(notification, test_db)

        assert (await reload(test_db, member)).membership_status == MembershipStatus.PENDING
        assert await ledger(test_db) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_server_key_fails_closed(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        settings = test_settings.model_copy(update={"midtrans_server_key": None})
        notification = make_notification(pending_payment.midtrans_order_id, "settlement")

        with pytest.raises(ExternalServiceError, match="Midtrans server key not configured"):
            await WebhookReconciler(settings).reconcile(notification, test_db)

        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_timestamp_mutates_nothing(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        notification = make_notification(
            pending_payment.midtrans_order_id, "settlement", settlement_time="not a time"
        )

        with pytest.raises(ValidationError):
            await WebhookReconciler(test_settings).reconcile(notification, test_db)

        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PENDING
        assert await ledger(test_db) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_replayed_settlement_is_duplicate(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        reconciler = WebhookReconciler(test_settings)
        notification = make_notification(
            pending_payment.midtrans_order_id, "settlement", transaction_id="tx-1"
        )

        await reconciler.reconcile(notification, test_db)
        replay = await reconciler.reconcile(notification, test_db)

        assert replay.outcome is WebhookOutcome.DUPLICATE
        assert not replay.membership_activated
        assert await ledger(test_db) == [("settlement", "applied"), ("settlement", "duplicate")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_late_pending_cannot_move_paid_backwards(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        reconciler = WebhookReconciler(test_settings)
        order_id = pending_payment.midtrans_order_id

        await reconciler.reconcile(
            make_notification(order_id, "settlement", transaction_id="tx-1"), test_db
        )
        late = await reconciler.reconcile(
            make_notification(order_id, "pending", status_code="201", transaction_id="tx-1"),
            test_db,
        )
        expired = await reconciler.reconcile(
            make_notification(order_id, "expire", status_code="407", transaction_id="tx-1"),
            test_db,
        )

        assert late.outcome is WebhookOutcome.IGNORED
        assert expired.outcome is WebhookOutcome.IGNORED
        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PAID
        assert (await reload(test_db, member)).membership_status == MembershipStatus.ACTIVE
        assert await ledger(test_db) == [
            ("settlement", "applied"),
            ("pending", "ignored"),
            ("expire", "ignored"),
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pending_then_settlement_applies_both(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        reconciler = WebhookReconciler(test_settings)
        order_id = pending_payment.midtrans_order_id

        first = await reconciler.reconcile(
            make_notification(order_id, "pending", status_code="201", transaction_id="tx-1"),
            test_db,
        )
        second = await reconciler.reconcile(
            make_notification(order_id, "settlement", transaction_id="tx-1"), test_db
        )

        assert first.outcome is WebhookOutcome.APPLIED
        assert second.outcome is WebhookOutcome.APPLIED
        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PAID

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paid_handlers_run_once_after_commit(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        calls: List[Tuple[int, int]] = []

        async def record(payment: Payment, user: User) -> None:
            calls.append((payment.id, user.id))

        reconciler = WebhookReconciler(test_settings)
        reconciler.register_paid_handler(record)
        notification = make_notification(
            pending_payment.midtrans_order_id, "capture", transaction_id="tx-1"
        )

        await reconciler.reconcile(notification, test_db)
        await reconciler.reconcile(notification, test_db)

        assert calls == [(pending_payment.id, member.id)]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_paid_handler_does_not_undo_payment(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        async def explode(payment: Payment, user: User) -> None:
            raise RuntimeError("whatsapp down")

        reconciler = WebhookReconciler(test_settings)
        reconciler.register_paid_handler(explode)

        result = await reconciler.reconcile(
            make_notification(pending_payment.midtrans_order_id, "settlement"), test_db
        )

        assert result.membership_activated
        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PAID

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_deliveries_apply_once(
        self,
        test_settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        """Simultaneous deliveries of one settlement are serialised per order."""
        reconciler = WebhookReconciler(test_settings)
        notification = make_notification(
            pending_payment.midtrans_order_id, "settlement", transaction_id="tx-1"
        )

        async def deliver() -> WebhookOutcome:
            async with session_factory() as session:
                return (await reconciler.reconcile(notification, session)).outcome

        outcomes = await asyncio.gather(*(deliver() for _ in range(5)))

        assert sorted(o.value for o in outcomes) == ["applied"] + ["duplicate"] * 4


class TestReconcileFaithful:
    """Test suite for the faithful (unguarded overwrite) policy."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_replay_can_move_paid_backwards(
        self,
        test_settings: Settings,
        test_db: AsyncSession,
        member: User,
        pending_payment: Payment,
        make_notification: Any,
    ) -> None:
        reconciler = WebhookReconciler(test_settings, policy=TransitionPolicy.FAITHFUL)
        order_id = pending_payment.midtrans_order_id

        await reconciler.reconcile(make_notification(order_id, "settlement"), test_db)
        result = await reconciler.reconcile(
            make_notification(order_id, "pending", status_code="201"), test_db
        )

        assert result.outcome is WebhookOutcome.APPLIED
        assert (await reload(test_db, pending_payment)).status == PaymentStatus.PENDING
        # Membership is never demoted by a webhook.
        assert (await reload(test_db, member)).membership_status == MembershipStatus.ACTIVE
        assert await ledger(test_db) == [("settlement", "applied"), ("pending", "applied")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_policy_read_from_settings(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"webhook_transition_policy": "faithful"})
        assert WebhookReconciler(settings).policy is TransitionPolicy.FAITHFUL
        assert WebhookReconciler(test_settings).policy is TransitionPolicy.HARDENED
