"""
Pytest configuration and fixtures.

Every test gets its own in-memory SQLite database (aiosqlite) and its own
storage directory; API tests drive the ASGI app through httpx.
"""
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from membership_system.api.main import create_app
from membership_system.config import Settings
from membership_system.core.schemas import MidtransNotification, RegistrationRequest
from membership_system.core.security import create_access_token
from membership_system.core.users import UserService
from membership_system.database.connection import build_session_factory
from membership_system.database.models import Base, User, UserRole
from membership_system.integrations.midtrans_client import compute_signature
from membership_system.monitoring.health import HealthCheck

SERVER_KEY = "SB-Mid-server-test-key"
SNAP_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"


def registration_data(**overrides: Any) -> Dict[str, Any]:
    """A valid registration body; override any field."""
    data: Dict[str, Any] = {
        "email": "library@unusa.ac.id",
        "password": "secret123",
        "institution_name": "Universitas Nahdlatul Ulama Surabaya",
        "head_librarian_name": "Siti Aminah",
        "head_librarian_phone": "081234567890",
        "agency": "UNUSA",
        "contact_name": "Ahmad Fauzi",
        "contact_phone": "081298765432",
        "address": "Jl. Raya Jemursari No. 57, Surabaya",
        "province": "Jawa Timur",
        "institution_email": "perpustakaan@unusa.ac.id",
        "website_url": "https://unusa.ac.id",
        "automation_url": "https://slims.unusa.ac.id",
        "repository_status": "Sudah",
        "collection_count": 12000,
        "accreditation_status": "Akreditasi A",
        "membership_type": "Pendaftaran Baru",
    }
    data.update(overrides)
    return data


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        app_name="membership-system-test",
        app_env="test",
        log_level="DEBUG",
        database_url="sqlite+aiosqlite://",
        midtrans_server_key=SERVER_KEY,
        midtrans_environment="sandbox",
        webhook_transition_policy="hardened",
        jwt_secret="test-jwt-secret",
        password_hash_rounds=4,
        storage_dir=str(tmp_path / "storage"),
        whatsapp_access_token=None,
        whatsapp_phone_number_id=None,
        notify_on_payment=False,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    """In-memory database shared by every session of one test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_service(test_settings: Settings) -> UserService:
    return UserService(test_settings)


@pytest.fixture
def create_user(
    user_service: UserService, test_db: AsyncSession
) -> Callable[..., Awaitable[User]]:
    """Register a user; keyword arguments override registration fields."""

    async def _create(role: UserRole = UserRole.MEMBER, **overrides: Any) -> User:
        request = RegistrationRequest(**registration_data(**overrides))
        return await user_service.register(request, test_db, role=role)

    return _create


@pytest.fixture
def make_notification() -> Callable[..., MidtransNotification]:
    """Build a correctly signed Midtrans notification."""

    def _make(
        order_id: str,
        transaction_status: str = "settlement",
        status_code: str = "200",
        gross_amount: str = "500000.00",
        server_key: str = SERVER_KEY,
        **fields: Any,
    ) -> MidtransNotification:
        return MidtransNotification(
            order_id=order_id,
            status_code=status_code,
            gross_amount=gross_amount,
            signature_key=compute_signature(order_id, status_code, gross_amount, server_key),
            transaction_status=transaction_status,
            **fields,
        )

    return _make


@pytest.fixture
def auth_headers(test_settings: Settings) -> Callable[[User], Dict[str, str]]:
    """Authorization header for a user."""

    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token(
            test_settings,
            {"sub": str(user.id), "role": UserRole(user.role).value, "email": user.email},
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def app(test_settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> Any:
    """Application wired to the test settings and the test database."""
    application = create_app(test_settings)
    application.state.session_factory = session_factory
    application.state.health_check = HealthCheck(test_settings, session_factory)
    return application


@pytest_asyncio.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
