"""
Health checks for readiness/liveness probes.

Checks:
- Database connectivity
- Document storage writability
"""
import asyncio
import tempfile
from pathlib import Path
from typing import Any, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from membership_system.config import Settings

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


def _probe_storage(storage_dir: str) -> None:
    root = Path(storage_dir)
    root.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=root, prefix=".health_", delete=True) as probe:
        probe.write(b"ok")
        probe.flush()


class HealthCheck:
    """Health check service for the database and document storage."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_storage(self) -> Dict[str, Any]:
        """
        Check that generated documents can be written.

        Raises:
            HealthCheckError: If the storage directory is not writable
        """
        try:
            await asyncio.to_thread(_probe_storage, self.settings.storage_dir)
        except OSError as e:
            logger.error("storage_health_check_failed", error=str(e))
            raise HealthCheckError(f"Storage health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "storage",
            "message": "Storage directory writable",
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("storage", self.check_storage)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: every dependency must be available."""
        return await self.check_all()
