"""
Member accounts: registration, login, profile management and admin listing.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import ConflictError, NotFoundError, UnauthorizedError
from membership_system.core.schemas import (
    AdminBootstrapRequest,
    LoginRequest,
    RegistrationRequest,
    UserListFilter,
    UserUpdateRequest,
)
from membership_system.core.security import PasswordHasher, create_access_token
from membership_system.database.models import (
    AccreditationStatus,
    Document,
    MembershipStatus,
    MembershipType,
    Payment,
    Province,
    RepositoryStatus,
    User,
    UserRole,
    utcnow,
)

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
DUPLICATE_EMAIL = "User with this email already exists"


@dataclass
class LoginResult:
    user: User
    token: str


class UserService:
    """
    Credential store operations.

    Login failures use one message for unknown email and wrong password;
    every other lookup failure names the missing id.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.hasher = PasswordHasher(self.settings)

    async def _get_user(self, db: AsyncSession, user_id: int) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found")
        return user

    async def _email_taken(
        self, db: AsyncSession, email: str, exclude_user_id: Optional[int] = None
    ) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        result = await db.execute(stmt)
        return result.first() is not None

    async def register(
        self,
        request: RegistrationRequest,
        db: AsyncSession,
        role: UserRole = UserRole.MEMBER,
    ) -> User:
        """
        Create a member account with status pending.

        Raises:
            ConflictError: If the email is already registered
        """
        logger.info("user_registration_started", email=request.email)

        if await self._email_taken(db, request.email):
            logger.warning("user_registration_duplicate_email", email=request.email)
            raise ConflictError(DUPLICATE_EMAIL)

        profile = request.model_dump(exclude={"password"})
        user = User(
            **profile,
            password_hash=await self.hasher.hash_async(request.password),
            role=role,
            membership_status=MembershipStatus.PENDING,
        )
        db.add(user)

        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email.
            await db.rollback()
            raise ConflictError(DUPLICATE_EMAIL)

        logger.info("user_registered", user_id=user.id, role=user.role)
        return user

    async def login(self, request: LoginRequest, db: AsyncSession) -> LoginResult:
        """
        Verify credentials and issue an access token.

        Raises:
            UnauthorizedError: For an unknown email or a wrong password alike
        """
        result = await db.execute(select(User).where(User.email == request.email))
        user = result.scalar_one_or_none()

        if user is None:
            await self.hasher.burn_verification(request.password)
            logger.warning("user_login_failed", reason="credentials")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not await self.hasher.verify_async(request.password, user.password_hash):
            logger.warning("user_login_failed", reason="credentials")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        token = create_access_token(
            self.settings,
            {"sub": str(user.id), "role": UserRole(user.role).value, "email": user.email},
        )
        logger.info("user_logged_in", user_id=user.id)
        return LoginResult(user=user, token=token)

    async def get_profile(self, user_id: int, db: AsyncSession) -> User:
        return await self._get_user(db, user_id)

    async def update(
        self, user_id: int, request: UserUpdateRequest, db: AsyncSession
    ) -> User:
        """
        Apply the fields present in ``request`` and nothing else.

        Raises:
            NotFoundError: If the user does not exist
            ConflictError: If the new email belongs to another user
        """
        user = await self._get_user(db, user_id)
        changes: Dict[str, Any] = request.model_dump(exclude_unset=True)

        if "email" in changes and await self._email_taken(db, changes["email"], user_id):
            raise ConflictError(DUPLICATE_EMAIL)

        for field_name, value in changes.items():
            setattr(user, field_name, value)
        user.updated_at = utcnow()

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(DUPLICATE_EMAIL)

        logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        return user

    async def delete(self, user_id: int, db: AsyncSession) -> None:
        """
        Delete a user together with their payments and documents.

        Raises:
            NotFoundError: If the user does not exist
        """
        await self._get_user(db, user_id)

        try:
            documents = await db.execute(delete(Document).where(Document.user_id == user_id))
            payments = await db.execute(delete(Payment).where(Payment.user_id == user_id))
            await db.execute(delete(User).where(User.id == user_id))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "user_deleted",
            user_id=user_id,
            payments_deleted=payments.rowcount,
            documents_deleted=documents.rowcount,
        )

    async def list_users(
        self, db: AsyncSession, user_filter: Optional[UserListFilter] = None
    ) -> List[User]:
        """
        Admin listing: conjunction of the supplied filters plus pagination.

        A limit of zero returns an empty list without querying.
        """
        if user_filter is not None and user_filter.limit == 0:
            return []

        stmt = select(User).order_by(User.id)
        if user_filter is not None:
            if user_filter.membership_status is not None:
                stmt = stmt.where(User.membership_status == user_filter.membership_status)
            if user_filter.province is not None:
                stmt = stmt.where(User.province == user_filter.province)
            if user_filter.membership_type is not None:
                stmt = stmt.where(User.membership_type == user_filter.membership_type)
            if user_filter.limit is not None:
                stmt = stmt.limit(user_filter.limit)
            if user_filter.offset is not None:
                stmt = stmt.offset(user_filter.offset)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def create_or_promote_admin(
        self, request: AdminBootstrapRequest, db: AsyncSession
    ) -> tuple[User, bool]:
        """
        Give ``request.email`` an admin account with the given password.

        An existing user is promoted and their password replaced; otherwise a
        new account is created with placeholder institution fields.

        Returns:
            tuple[User, bool]: The admin and whether it was newly created
        """
        password_hash = await self.hasher.hash_async(request.password)
        result = await db.execute(select(User).where(User.email == request.email))
        user = result.scalar_one_or_none()
        created = user is None

        if user is None:
            user = User(
                email=request.email,
                password_hash=password_hash,
                role=UserRole.ADMIN,
                institution_name=request.name,
                head_librarian_name=request.name,
                head_librarian_phone="-",
                agency=request.name,
                contact_name=request.name,
                contact_phone="-",
                address="-",
                province=Province.JAWA_TIMUR,
                institution_email=request.email,
                website_url="-",
                automation_url="-",
                repository_status=RepositoryStatus.NOT_YET,
                collection_count=0,
                accreditation_status=AccreditationStatus.NOT_ACCREDITED,
                membership_type=MembershipType.NEW,
                membership_status=MembershipStatus.ACTIVE,
            )
            db.add(user)
        else:
            user.role = UserRole.ADMIN
            user.password_hash = password_hash
            user.updated_at = utcnow()

        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("admin_account_ready", user_id=user.id, created=created)
        return user, created
