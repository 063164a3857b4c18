"""SQLAlchemy database models for the membership system."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class Province(str, Enum):
    JAWA_TIMUR = "Jawa Timur"
    JAWA_BARAT = "Jawa Barat"
    JAWA_TENGAH = "Jawa Tengah"


class RepositoryStatus(str, Enum):
    NOT_YET = "Belum"
    DONE = "Sudah"


class AccreditationStatus(str, Enum):
    A = "Akreditasi A"
    B = "Akreditasi B"
    NOT_ACCREDITED = "Belum Akreditasi"


class MembershipType(str, Enum):
    NEW = "Pendaftaran Baru"
    RENEWAL = "Perpanjangan"


class MembershipStatus(str, Enum):
    """
    Coarse membership lifecycle flag.

    Registration starts at PENDING; a payment reconciled to paid moves the
    member to ACTIVE. Nothing in this service demotes a member automatically.
    """

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class PaymentStatus(str, Enum):
    """
    Payment lifecycle states.

    State machine:
    PENDING → PAID | FAILED | EXPIRED
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


class DocumentType(str, Enum):
    TRANSFER_PROOF = "transfer_proof"
    RECEIPT = "receipt"
    CERTIFICATE = "certificate"


class UserRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


def _enum_column(enum_cls: type[Enum], name: str) -> SAEnum:
    # Store the enum values ("Jawa Timur"), not the member names.
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Registered institution and its login credentials.

    The membership_status column is the source of truth for whether the
    institution is a paid-up member.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"), nullable=False, default=UserRole.MEMBER
    )
    institution_name: Mapped[str] = mapped_column(Text, nullable=False)
    head_librarian_name: Mapped[str] = mapped_column(Text, nullable=False)
    head_librarian_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    agency: Mapped[str] = mapped_column(Text, nullable=False)
    contact_name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    province: Mapped[Province] = mapped_column(_enum_column(Province, "province"), nullable=False)
    institution_email: Mapped[str] = mapped_column(String(255), nullable=False)
    website_url: Mapped[str] = mapped_column(Text, nullable=False)
    automation_url: Mapped[str] = mapped_column(Text, nullable=False)
    repository_status: Mapped[RepositoryStatus] = mapped_column(
        _enum_column(RepositoryStatus, "repository_status"), nullable=False
    )
    collection_count: Mapped[int] = mapped_column(Integer, nullable=False)
    accreditation_status: Mapped[AccreditationStatus] = mapped_column(
        _enum_column(AccreditationStatus, "accreditation_status"), nullable=False
    )
    membership_type: Mapped[MembershipType] = mapped_column(
        _enum_column(MembershipType, "membership_type"), nullable=False
    )
    membership_status: Mapped[MembershipStatus] = mapped_column(
        _enum_column(MembershipStatus, "membership_status"),
        nullable=False,
        default=MembershipStatus.PENDING,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("collection_count >= 0", name="non_negative_collection"),
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return (
            f"<User(id={self.id}, email={self.email}, "
            f"membership_status={self.membership_status})>"
        )


class Payment(Base):
    """
    One row per Midtrans checkout attempt.

    The order id is minted locally and correlates the row with the Snap
    session and every notification Midtrans sends for it.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    midtrans_order_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    midtrans_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    payment_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transaction_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settlement_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        Index("idx_payments_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, order_id={self.midtrans_order_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Document(Base):
    """
    Artifact metadata: uploaded transfer proofs, receipts and certificates.

    download_token is both the lookup key and the only credential needed to
    fetch the file.
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type: Mapped[DocumentType] = mapped_column(
        _enum_column(DocumentType, "document_type"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    download_token: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        """String representation of Document."""
        return (
            f"<Document(id={self.id}, user_id={self.user_id}, "
            f"type={self.document_type}, file={self.file_name})>"
        )


class WebhookEvent(Base):
    """
    Ledger of verified Midtrans notifications.

    Written in the same transaction as the payment update it caused (or
    declined to cause). Immutable once written.
    """

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transaction_status: Mapped[str] = mapped_column(String(50), nullable=False)
    status_code: Mapped[str] = mapped_column(String(10), nullable=False)
    gross_amount: Mapped[str] = mapped_column(String(50), nullable=False)
    mapped_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "webhook_mapped_status"), nullable=False
    )
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "outcome IN ('applied', 'duplicate', 'ignored')", name="valid_webhook_outcome"
        ),
        Index("idx_webhook_events_fingerprint", "order_id", "transaction_id", "transaction_status"),
    )

    def __repr__(self) -> str:
        """String representation of WebhookEvent."""
        return (
            f"<WebhookEvent(id={self.id}, order_id={self.order_id}, "
            f"status={self.transaction_status}, outcome={self.outcome})>"
        )
