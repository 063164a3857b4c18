"""Domain errors raised by the membership services."""


class MembershipError(Exception):
    """Base exception for membership service errors."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MembershipError):
    """A user, payment or document does not exist."""

    status_code = 404


class ConflictError(MembershipError):
    """A uniqueness rule would be broken (e.g. duplicate email)."""

    status_code = 409


class UnauthorizedError(MembershipError):
    """Bad credentials or a webhook signature that does not verify."""

    status_code = 401


class ForbiddenError(MembershipError):
    """Authenticated, but not allowed to act on this resource."""

    status_code = 403


class ValidationError(MembershipError):
    """Input that passed schema validation but is still unusable."""

    status_code = 422


class ExternalServiceError(MembershipError):
    """Midtrans or another collaborator failed or is not configured."""

    status_code = 502


class DocumentFileMissingError(MembershipError):
    """The document row exists but its file is gone from disk."""

    status_code = 410
