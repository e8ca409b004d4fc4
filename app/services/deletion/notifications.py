"""Fire-and-forget side effects of the deletion lifecycle.

Nothing here may block or fail the pipeline: every error is logged and
dropped. The queue entry and its log rows are already committed by the time
any of these run.
"""

from typing import Any
from uuid import UUID

import httpx

from app.config import settings
from app.core.logging import get_logger
from app.core.redis import RedisManager, redis_manager
from app.utils.time import utc_now

logger = get_logger(__name__)


class DeletionNotifier:
    """Tenant webhook delivery and tenant cache purge."""

    def __init__(
        self,
        cache: RedisManager | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache = cache or redis_manager
        self.timeout_seconds = (
            settings.deletion_webhook_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

    async def notify(
        self,
        event: str,
        tenant_id: UUID,
        queue_id: UUID,
        webhook_url: str | None = None,
        **details: Any,
    ) -> bool:
        """
        Emit a lifecycle event.

        Always logs; POSTs the event to ``webhook_url`` when the tenant has one.

        Returns:
            True if a webhook was delivered with a 2xx response
        """
        payload = {
            "event": event,
            "tenant_id": str(tenant_id),
            "queue_id": str(queue_id),
            "occurred_at": utc_now().isoformat(),
            **{key: str(value) if isinstance(value, UUID) else value for key, value in details.items()},
        }
        logger.info(event, **{k: v for k, v in payload.items() if k != "event"})

        if not webhook_url:
            return False

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(webhook_url, json=payload)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                "Deletion webhook delivery failed",
                webhook_event=event,
                tenant_id=str(tenant_id),
                error=str(e),
            )
            return False

        logger.debug("Deletion webhook delivered", webhook_event=event, tenant_id=str(tenant_id))
        return True

    async def purge_tenant_cache(self, tenant_id: UUID) -> int:
        """Best-effort removal of ``tenant:{id}:*`` cache keys."""
        if not self.cache.is_initialized:
            logger.debug("Redis cache not initialized, skipping purge", tenant_id=str(tenant_id))
            return 0
        try:
            deleted = await self.cache.delete_pattern(f"tenant:{tenant_id}:*")
        except Exception as e:
            logger.warning("Tenant cache purge failed", tenant_id=str(tenant_id), error=str(e))
            return 0

        logger.info("Tenant cache purged", tenant_id=str(tenant_id), keys_deleted=deleted)
        return deleted
