"""
Main FastAPI application.

Membership API with:
- CORS configuration
- Domain error mapping
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from membership_system import __version__
from membership_system.config import Settings, get_settings
from membership_system.core.documents import DocumentService
from membership_system.core.exceptions import MembershipError
from membership_system.core.notifications import NotificationDispatcher
from membership_system.core.payments import PaymentService
from membership_system.core.reconciliation import WebhookReconciler
from membership_system.core.users import UserService
from membership_system.database.connection import build_engine, build_session_factory, init_db
from membership_system.monitoring.health import HealthCheck
from membership_system.monitoring.logging import setup_logging

from .routes import (
    admin_router,
    auth_router,
    document_router,
    monitoring_router,
    notification_router,
    payment_router,
    user_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Creates tables on the application's own engine at startup and
    disposes of it on shutdown.
    """
    settings: Settings = app.state.settings
    engine: AsyncEngine = app.state.engine
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        midtrans_environment=settings.midtrans_environment,
        webhook_transition_policy=settings.webhook_transition_policy,
    )

    try:
        await init_db(engine)
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    try:
        await engine.dispose()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


async def membership_error_handler(request: Request, exc: MembershipError) -> JSONResponse:
    """Map domain errors to their HTTP status with the stable message."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_rejected",
        error=exc.message,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Bind a request id into the log context and echo it as X-Request-ID.

    An incoming X-Request-ID header is reused.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application and its services around one Settings object.

    Args:
        settings: Settings to use (get_settings() otherwise)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Library Association Membership API",
        description=(
            "Institution registration, Midtrans membership payments, "
            "webhook reconciliation, membership documents and WhatsApp notifications."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    notifier = NotificationDispatcher(settings)
    reconciler = WebhookReconciler(settings)
    if settings.notify_on_payment:
        reconciler.register_paid_handler(notifier.notify_payment_settled)

    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.user_service = UserService(settings)
    app.state.payment_service = PaymentService(settings)
    app.state.reconciler = reconciler
    app.state.document_service = DocumentService(settings)
    app.state.notifier = notifier
    app.state.health_check = HealthCheck(settings, session_factory)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)

    app.add_exception_handler(MembershipError, membership_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(payment_router)
    app.include_router(webhook_router)
    app.include_router(document_router)
    app.include_router(notification_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "midtrans_environment": settings.midtrans_environment,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


# Setup logging first
setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "membership_system.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
