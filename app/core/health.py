"""Health check utilities with caching for production scalability."""

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.utils.exceptions import PlanIntegrityError

if TYPE_CHECKING:
    from app.services.deletion.plan import DeletionPlan


class HealthChecker:
    """
    Health checker with caching to avoid overwhelming database with health checks.

    In production, Kubernetes may check readiness every few seconds.
    Caching prevents excessive database queries.
    """

    def __init__(self, cache_ttl_seconds: int = 30):
        self._last_check: Optional[datetime] = None
        self._last_result: bool = False
        self._cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.plan_error: Optional[str] = None

    async def check_database(self, engine: AsyncEngine) -> bool:
        """
        Check database connectivity with caching.

        Args:
            engine: SQLAlchemy async engine

        Returns:
            True if database is healthy, False otherwise
        """
        if self._last_check and datetime.now() - self._last_check < self._cache_ttl:
            logger.debug(f"Using cached health check result: {self._last_result}")
            return self._last_result

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            self._last_result = True
            logger.debug("Database health check passed")
        except (OperationalError, ConnectionRefusedError, TimeoutError) as e:
            logger.warning(f"Database health check failed: {type(e).__name__}: {e}")
            self._last_result = False

        self._last_check = datetime.now()
        return self._last_result

    async def check_deletion_plan(self, engine: AsyncEngine, plan: "DeletionPlan") -> bool:
        """
        Re-validate the deletion manifest against the live schema.

        A migration that adds a tenant-scoped table without a step makes the
        service unready.
        """
        try:
            await plan.validate_against_database(engine)
        except PlanIntegrityError as e:
            self.plan_error = e.message
            return False
        self.plan_error = None
        return True


# Global health checker instance
health_checker = HealthChecker(cache_ttl_seconds=30)
