"""Core membership logic: accounts, payments, reconciliation, documents, notifications."""
from .exceptions import (
    ConflictError,
    DocumentFileMissingError,
    ExternalServiceError,
    ForbiddenError,
    MembershipError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

__all__ = [
    "ConflictError",
    "DocumentFileMissingError",
    "ExternalServiceError",
    "ForbiddenError",
    "MembershipError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationError",
]
