"""
FastAPI dependencies: settings, services and the authenticated caller.

Services are built once per application in ``create_app`` and kept on
``app.state``.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from membership_system.config import Settings
from membership_system.core.documents import DocumentService
from membership_system.core.exceptions import ForbiddenError, UnauthorizedError
from membership_system.core.notifications import NotificationDispatcher
from membership_system.core.payments import PaymentService
from membership_system.core.reconciliation import WebhookReconciler
from membership_system.core.security import decode_access_token
from membership_system.core.users import UserService
from membership_system.database.connection import get_db
from membership_system.database.models import User, UserRole
from membership_system.monitoring.health import HealthCheck

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.reconciler


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_app_settings),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to a user.

    Raises:
        UnauthorizedError: Missing, invalid or expired token, or a deleted user
    """
    if not token:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(settings, token)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired access token")

    user = await db.get(User, user_id)
    if user is None:
        raise UnauthorizedError("Invalid or expired access token")
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Admin privileges required")
    return current_user


def ensure_self_or_admin(current_user: User, user_id: int) -> None:
    """Members may only act on their own records; admins on anyone's."""
    if current_user.role != UserRole.ADMIN and current_user.id != user_id:
        raise ForbiddenError("Not allowed to access another member's records")
