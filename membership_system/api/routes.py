"""
API routes for the membership system.

Domain errors raised by the services propagate to the application-level
MembershipError handler, which turns them into HTTP responses.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import FileResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from membership_system.core.documents import DocumentService
from membership_system.core.notifications import NotificationDispatcher
from membership_system.core.payments import PaymentService
from membership_system.core.reconciliation import WebhookReconciler
from membership_system.core.schemas import UserListFilter
from membership_system.core.users import UserService
from membership_system.database.connection import get_db
from membership_system.database.models import (
    MembershipStatus,
    MembershipType,
    Province,
    User,
)
from membership_system.monitoring.health import HealthCheck

from .dependencies import (
    ensure_self_or_admin,
    get_current_user,
    get_document_service,
    get_health_check,
    get_notifier,
    get_payment_service,
    get_reconciler,
    get_user_service,
    require_admin,
)
from .schemas import (
    CertificateRequest,
    CreatePaymentRequest,
    DocumentResponse,
    DocumentUploadRequest,
    HealthCheckResponse,
    LoginRequest,
    LoginResponse,
    MidtransNotification,
    NotificationResponse,
    PaymentCreatedResponse,
    PaymentResponse,
    ReceiptRequest,
    RegistrationRequest,
    UserResponse,
    UserUpdateRequest,
    WebhookResponse,
    WhatsAppNotificationRequest,
)

logger = structlog.get_logger(__name__)

# Create routers
auth_router = APIRouter(prefix="/auth", tags=["auth"])
user_router = APIRouter(prefix="/users", tags=["users"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
document_router = APIRouter(prefix="/documents", tags=["documents"])
notification_router = APIRouter(prefix="/notifications", tags=["notifications"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


# Auth


@auth_router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an institution",
)
async def register(
    request: RegistrationRequest,
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Any:
    return await users.register(request, db)


@auth_router.post("/login", response_model=LoginResponse, summary="Log in")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    result = await users.login(request, db)
    return {"access_token": result.token, "token_type": "bearer", "user": result.user}


# Users


@user_router.get("/{user_id}", response_model=UserResponse, summary="Get a member profile")
async def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Any:
    ensure_self_or_admin(current_user, user_id)
    return await users.get_profile(user_id, db)


@user_router.patch("/{user_id}", response_model=UserResponse, summary="Update a member (admin)")
async def update_user(
    user_id: int,
    request: UserUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Any:
    logger.info("api_update_user", user_id=user_id, admin_id=admin.id)
    return await users.update(user_id, request, db)


@user_router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a member with their payments and documents (admin)",
)
async def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Response:
    logger.info("api_delete_user", user_id=user_id, admin_id=admin.id)
    await users.delete(user_id, db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@user_router.get(
    "/{user_id}/payments", response_model=List[PaymentResponse], summary="List a member's payments"
)
async def list_user_payments(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> Any:
    ensure_self_or_admin(current_user, user_id)
    return await payments.list_user_payments(user_id, db)


@user_router.get(
    "/{user_id}/documents",
    response_model=List[DocumentResponse],
    summary="List a member's documents",
)
async def list_user_documents(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
) -> Any:
    ensure_self_or_admin(current_user, user_id)
    return await documents.list_user_documents(user_id, db)


# Payments


@payment_router.post(
    "",
    response_model=PaymentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment",
    description=(
        "Creates a pending payment and opens a Midtrans Snap checkout. "
        "Responds 502 with the pending payment when Midtrans fails."
    ),
)
async def create_payment(
    request: CreatePaymentRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    ensure_self_or_admin(current_user, request.user_id)

    result = await payments.create_payment(request.user_id, request.amount, db)
    if not result.checkout_issued:
        response.status_code = status.HTTP_502_BAD_GATEWAY

    return {
        "outcome": result.outcome.value,
        "payment": result.payment,
        "redirect_url": result.redirect_url,
        "snap_token": result.snap_token,
        "error": result.error.message if result.error else None,
    }


@payment_router.get("/me", response_model=List[PaymentResponse], summary="List my payments")
async def list_my_payments(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> Any:
    return await payments.list_user_payments(current_user.id, db)


# Webhooks


@webhook_router.post(
    "/midtrans",
    response_model=WebhookResponse,
    summary="Midtrans notification endpoint",
    description="Verifies the notification signature and reconciles the payment",
)
async def midtrans_webhook(
    notification: MidtransNotification,
    db: AsyncSession = Depends(get_db),
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    result = await reconciler.reconcile(notification, db)
    return {"status": "ok", "outcome": result.outcome.value, "payment": result.payment}


# Documents


@document_router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an uploaded document",
)
async def upload_document(
    request: DocumentUploadRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
) -> Any:
    ensure_self_or_admin(current_user, request.user_id)
    return await documents.upload(request, db)


@document_router.post(
    "/certificates",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate a membership certificate",
)
async def generate_certificate(
    request: CertificateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
) -> Any:
    ensure_self_or_admin(current_user, request.user_id)
    return await documents.generate_certificate(request.user_id, db)


@document_router.post(
    "/receipts",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate a receipt for a paid payment",
)
async def generate_receipt(
    request: ReceiptRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
) -> Any:
    ensure_self_or_admin(current_user, request.user_id)
    return await documents.generate_receipt(request.user_id, request.payment_id, db)


@document_router.get(
    "/download/{token}",
    response_class=FileResponse,
    summary="Download a document by its bearer token",
)
async def download_document(
    token: str,
    db: AsyncSession = Depends(get_db),
    documents: DocumentService = Depends(get_document_service),
) -> FileResponse:
    info = await documents.resolve_download(token, db)
    return FileResponse(info.file_path, media_type=info.mime_type, filename=info.file_name)


# Notifications


@notification_router.post(
    "/whatsapp",
    response_model=NotificationResponse,
    summary="Send a WhatsApp message (admin)",
)
async def send_whatsapp(
    request: WhatsAppNotificationRequest,
    admin: User = Depends(require_admin),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> Any:
    return await notifier.send(request.phone_number, request.message)


# Admin


@admin_router.get("/users", response_model=List[UserResponse], summary="List members")
async def list_users(
    membership_status: Optional[MembershipStatus] = None,
    province: Optional[Province] = None,
    membership_type: Optional[MembershipType] = None,
    limit: Optional[int] = Query(default=None, ge=0),
    offset: Optional[int] = Query(default=None, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Any:
    user_filter = UserListFilter(
        membership_status=membership_status,
        province=province,
        membership_type=membership_type,
        limit=limit,
        offset=offset,
    )
    return await users.list_users(db, user_filter)


@admin_router.get("/payments", response_model=List[PaymentResponse], summary="List all payments")
async def list_all_payments(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> Any:
    return await payments.list_all_payments(db)


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
