"""
Health check endpoints for Kubernetes readiness and liveness checks.

Checks:
- Database connectivity
- Payment timeout reaper state
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.config import Settings
from bloompay.workers.payment_timeout import PaymentTimeoutReaper

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Payment timeout reaper check
    - Overall system health status
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        reaper: Optional[PaymentTimeoutReaper] = None,
    ) -> None:
        """Initialize health check service."""
        self.session_factory = session_factory
        self.settings = settings
        self.reaper = reaper

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

                return {
                    "status": "healthy",
                    "service": "database",
                    "message": "Database connection successful",
                }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    def check_reaper(self) -> Dict[str, Any]:
        """
        Check that the payment timeout reaper runs when it should.

        Raises:
            HealthCheckError: If the reaper is enabled but not running
        """
        if not self.settings.payment_timeout_enabled:
            return {"status": "healthy", "service": "payment_timeout", "message": "Disabled"}
        if self.reaper is None or not self.reaper.running:
            raise HealthCheckError("Payment timeout reaper is not running")
        return {
            "status": "healthy",
            "service": "payment_timeout",
            "message": "Payment timeout reaper running",
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        try:
            checks["payment_timeout"] = self.check_reaper()
        except HealthCheckError as e:
            checks["payment_timeout"] = {
                "status": "unhealthy",
                "service": "payment_timeout",
                "error": str(e),
            }
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness check endpoint.

        Simple check that the application is running.
        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness check endpoint.

        Checks if application is ready to accept traffic.
        """
        return await self.check_all()
