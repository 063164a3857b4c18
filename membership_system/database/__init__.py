"""Database package for the membership system."""
from .connection import (
    build_engine,
    build_session_factory,
    close_db,
    get_db,
    get_session_factory,
    init_db,
)
from .models import (
    Base,
    Document,
    DocumentType,
    MembershipStatus,
    Payment,
    PaymentStatus,
    User,
    UserRole,
    WebhookEvent,
)

__all__ = [
    "Base",
    "Document",
    "DocumentType",
    "MembershipStatus",
    "Payment",
    "PaymentStatus",
    "User",
    "UserRole",
    "WebhookEvent",
    "build_engine",
    "build_session_factory",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
]
