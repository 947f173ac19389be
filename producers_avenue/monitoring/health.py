"""
Health checks for readiness/liveness probes.

Checks:
- Database connectivity
- Redis connectivity (webhook deduplication store)
"""
from typing import Any, Dict

import redis.asyncio as aioredis
import structlog
from sqlalchemy import text

from producers_avenue.config import get_settings
from producers_avenue.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the store and cache dependencies."""

    def __init__(self) -> None:
        self.settings = get_settings()

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {"status": "healthy", "service": "database"}

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Redis only backs webhook deduplication, which fails open, so an
        outage degrades the service rather than taking it down.

        Raises:
            HealthCheckError: If Redis check fails
        """
        client = aioredis.from_url(self.settings.redis_url, decode_responses=True)
        try:
            await client.ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {str(e)}")
        finally:
            await client.aclose()

        return {"status": "healthy", "service": "redis"}

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        The overall status is ``unhealthy`` only when the database is down;
        a Redis outage reports ``degraded``.
        """
        checks: Dict[str, Any] = {}
        status = "healthy"

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {"status": "unhealthy", "service": "database", "error": str(e)}
            status = "unhealthy"

        try:
            checks["redis"] = await self.check_redis()
        except HealthCheckError as e:
            checks["redis"] = {"status": "unhealthy", "service": "redis", "error": str(e)}
            if status == "healthy":
                status = "degraded"

        return {"status": status, "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe: the process is up. No dependencies are checked."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
