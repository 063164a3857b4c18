"""
Password hashing, access tokens and download tokens.

bcrypt hashing goes through passlib; access tokens are HS256 JWTs signed
with the configured secret.
"""
import asyncio
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict

import jwt
import structlog
from jwt import PyJWTError
from passlib.context import CryptContext

from membership_system.config import Settings
from membership_system.core.exceptions import UnauthorizedError

logger = structlog.get_logger(__name__)

# Verified against when the email is unknown so that a missing account and a
# wrong password take the same time to reject.
DUMMY_PASSWORD = "timing-attack-prevention-dummy-password"


@lru_cache(maxsize=8)
def get_password_context(rounds: int) -> CryptContext:
    """CryptContext for the given bcrypt cost, built once per cost."""
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    return str(get_password_context(rounds).hash(DUMMY_PASSWORD))


class PasswordHasher:
    """bcrypt hashing that keeps the event loop responsive."""

    def __init__(self, settings: Settings):
        self.context = get_password_context(settings.password_hash_rounds)
        self.rounds = settings.password_hash_rounds

    def hash(self, password: str) -> str:
        return str(self.context.hash(password))

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        try:
            return bool(self.context.verify(plain_password, hashed_password))
        except (ValueError, TypeError) as e:
            logger.error("password_verification_error", error=str(e))
            return False

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, plain_password: str, hashed_password: str) -> bool:
        return await asyncio.to_thread(self.verify, plain_password, hashed_password)

    async def burn_verification(self, plain_password: str) -> None:
        """Spend one verification's worth of time on a known-bad hash."""
        await self.verify_async(plain_password, _dummy_hash(self.rounds))


def create_access_token(
    settings: Settings, data: Dict[str, Any], expires_delta: timedelta | None = None
) -> str:
    """
    Create a JWT access token.

    Args:
        settings: Settings holding the secret and algorithm
        data: The claims to encode in the token
        expires_delta: Optional expiration time delta

    Returns:
        str: The encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(days=settings.jwt_expire_days)
    )
    to_encode.update({"exp": expire})
    return str(jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm))


def decode_access_token(settings: Settings, token: str) -> Dict[str, Any]:
    """
    Decode and verify a JWT access token.

    Raises:
        UnauthorizedError: If the token is malformed, forged or expired
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except PyJWTError as e:
        logger.warning("access_token_rejected", error=str(e))
        raise UnauthorizedError("Invalid or expired access token")
    return dict(payload)


def generate_download_token() -> str:
    """High-entropy bearer token for document downloads."""
    return secrets.token_urlsafe(32)
