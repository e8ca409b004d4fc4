"""Celery task driving the deletion queue.

Each invocation opens its own engine with NullPool: Celery runs every task
in a fresh event loop and pooled asyncpg connections cannot cross loops.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config import settings
from app.core.logging import get_logger
from app.services.deletion.orchestrator import DeletionOrchestrator
from app.services.deletion.plan import build_default_plan
from app.services.deletion.worker import make_worker_token
from workers.celery_app import celery_app

logger = get_logger(__name__)


async def run_claim_cycle(
    orchestrator: DeletionOrchestrator, worker_token: str
) -> dict[str, Any]:
    """Claim and run at most one queue entry."""
    queue_id = await orchestrator.claim_next(worker_token)
    if queue_id is None:
        return {"status": "idle"}
    status = await orchestrator.execute(queue_id, worker_token)
    return {
        "status": "processed",
        "queue_id": str(queue_id),
        "result": status.value if status is not None else "ownership_lost",
    }


async def _process_deletion_queue(worker_token: str) -> dict[str, Any]:
    engine = create_async_engine(settings.db_url, poolclass=NullPool)
    try:
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        orchestrator = DeletionOrchestrator(session_factory, build_default_plan())
        return await run_claim_cycle(orchestrator, worker_token)
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="workers.tasks.deletion.process_deletion_queue")
def process_deletion_queue(self: Any) -> dict[str, Any]:
    """Beat-scheduled: run one claim cycle under this task's worker token."""
    worker_token = f"celery-{self.request.id or make_worker_token()}"
    result = asyncio.run(_process_deletion_queue(worker_token))
    logger.info("Deletion queue cycle finished", worker=worker_token, **result)
    return result
