"""Health checks for the database (with pgvector) and the Redis job queue."""

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from redis import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""

    name: str
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


@dataclass
class HealthCheckResult:
    """Overall health check result."""

    status: HealthStatus
    components: list[ComponentHealth]
    version: str = APP_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "status": self.status.value,
            "version": self.version,
            "components": {
                c.name: {
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                }
                for c in self.components
            },
        }


class HealthCheckService:
    """Service for checking health of application dependencies.

    The database is critical: answers cannot be produced without the chunk
    store. Redis only carries background enrichment jobs, so losing it
    degrades the service rather than taking it down.
    """

    CRITICAL_COMPONENTS = frozenset({"database"})

    def __init__(
        self,
        db_session: AsyncSession | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()

    async def check_database(self) -> ComponentHealth:
        """Check connectivity and that the vector extension is installed."""
        if self.db_session is None:
            return ComponentHealth(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message="No database session available",
            )

        start = time.perf_counter()
        try:
            result = await self.db_session.execute(
                text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
            )
            vector_version = result.scalar()
            latency = round((time.perf_counter() - start) * 1000, 2)
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return ComponentHealth(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message=str(e),
            )

        if vector_version is None:
            return ComponentHealth(
                name="database",
                status=HealthStatus.DEGRADED,
                message="Connected, but the pgvector extension is missing",
                latency_ms=latency,
            )
        return ComponentHealth(
            name="database",
            status=HealthStatus.HEALTHY,
            message=f"Connected (pgvector {vector_version})",
            latency_ms=latency,
        )

    async def check_redis(self) -> ComponentHealth:
        """Check Redis connectivity."""
        start = time.perf_counter()
        try:
            redis_client: Redis = Redis.from_url(  # type: ignore[type-arg]
                str(self.settings.redis_url),
                socket_timeout=5,
            )
            redis_client.ping()
            latency = (time.perf_counter() - start) * 1000
            redis_client.close()
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return ComponentHealth(
                name="redis",
                status=HealthStatus.UNHEALTHY,
                message=str(e),
            )

        return ComponentHealth(
            name="redis",
            status=HealthStatus.HEALTHY,
            message="Connected",
            latency_ms=round(latency, 2),
        )

    async def check_all(self) -> HealthCheckResult:
        """Check all dependencies and return overall health."""
        components = [
            await self.check_database(),
            await self.check_redis(),
        ]
        return HealthCheckResult(
            status=self._overall_status(components),
            components=components,
        )

    def _overall_status(self, components: list[ComponentHealth]) -> HealthStatus:
        if all(c.status == HealthStatus.HEALTHY for c in components):
            return HealthStatus.HEALTHY
        critical_unhealthy = any(
            c.status == HealthStatus.UNHEALTHY and c.name in self.CRITICAL_COMPONENTS
            for c in components
        )
        return HealthStatus.UNHEALTHY if critical_unhealthy else HealthStatus.DEGRADED

    async def check_readiness(self) -> HealthCheckResult:
        """Check if application is ready to serve traffic."""
        return await self.check_all()
