"""
Pydantic schemas for API responses.

Request bodies live in ``membership_system.core.schemas`` and are
re-exported here.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from membership_system.core.schemas import (
    CertificateRequest,
    CreatePaymentRequest,
    DocumentUploadRequest,
    LoginRequest,
    MidtransNotification,
    ReceiptRequest,
    RegistrationRequest,
    UserUpdateRequest,
    WhatsAppNotificationRequest,
)
from membership_system.database.models import (
    AccreditationStatus,
    DocumentType,
    MembershipStatus,
    MembershipType,
    PaymentStatus,
    Province,
    RepositoryStatus,
    UserRole,
)

__all__ = [
    "CertificateRequest",
    "CreatePaymentRequest",
    "DocumentResponse",
    "DocumentUploadRequest",
    "HealthCheckResponse",
    "LoginRequest",
    "LoginResponse",
    "MidtransNotification",
    "NotificationResponse",
    "PaymentCreatedResponse",
    "PaymentResponse",
    "ReceiptRequest",
    "RegistrationRequest",
    "UserResponse",
    "UserUpdateRequest",
    "WebhookResponse",
    "WhatsAppNotificationRequest",
]


class UserResponse(BaseModel):
    """Member profile. The password hash is never serialised."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: UserRole
    institution_name: str
    head_librarian_name: str
    head_librarian_phone: str
    agency: str
    contact_name: str
    contact_phone: str
    address: str
    province: Province
    institution_email: str
    website_url: str
    automation_url: str
    repository_status: RepositoryStatus
    collection_count: int
    accreditation_status: AccreditationStatus
    membership_type: MembershipType
    membership_status: MembershipStatus
    created_at: datetime
    updated_at: datetime


class LoginResponse(BaseModel):
    access_token: str = Field(..., description="Bearer token for the Authorization header")
    token_type: str = Field(default="bearer")
    user: UserResponse


class PaymentResponse(BaseModel):
    """Payment row; the exact decimal amount is rendered as a number."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    midtrans_order_id: str
    midtrans_transaction_id: Optional[str] = None
    amount: float
    status: PaymentStatus
    payment_type: Optional[str] = None
    transaction_time: Optional[datetime] = None
    settlement_time: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentCreatedResponse(BaseModel):
    """
    Result of payment creation.

    Returned with 201 when checkout was issued and with 502 when the
    pending payment exists but Midtrans did not issue a checkout.
    """

    outcome: str = Field(..., description="created or created_but_gateway_failed")
    payment: PaymentResponse
    redirect_url: Optional[str] = Field(default=None, description="Snap hosted checkout URL")
    snap_token: Optional[str] = Field(default=None, description="Snap token")
    error: Optional[str] = Field(default=None, description="Gateway error, if any")


class WebhookResponse(BaseModel):
    status: str = Field(default="ok")
    outcome: str = Field(..., description="applied, duplicate or ignored")
    payment: PaymentResponse


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    document_type: DocumentType
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    download_token: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class NotificationResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
