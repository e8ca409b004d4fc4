"""Standalone deletion worker process.

Usage:
    python -m workers.deletion_worker [--workers N] [--poll-interval SECONDS]

Validates the deletion plan against the live schema before polling; an
invalid plan exits non-zero without touching the queue.
"""

import argparse
import asyncio
import signal
import sys

from app.config import settings
from app.core.database import AsyncSessionLocal, close_db, engine
from app.core.logging import configure_logging, get_logger
from app.core.redis import redis_manager
from app.services.deletion.orchestrator import DeletionOrchestrator
from app.services.deletion.plan import build_default_plan
from app.services.deletion.worker import DeletionWorkerPool
from app.utils.exceptions import PlanIntegrityError

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run tenant deletion workers")
    parser.add_argument("--workers", type=int, default=settings.deletion_worker_count)
    parser.add_argument(
        "--poll-interval", type=float, default=settings.deletion_poll_interval_seconds
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    plan = build_default_plan()
    try:
        await plan.validate_against_database(engine)
    except PlanIntegrityError as e:
        logger.critical("Refusing to start deletion workers", error=e.message)
        await close_db()
        return 1

    try:
        await redis_manager.init_connections()
    except Exception as e:
        logger.warning("Redis unavailable, tenant cache purge disabled", error=str(e))

    orchestrator = DeletionOrchestrator(AsyncSessionLocal, plan)
    pool = DeletionWorkerPool(orchestrator, worker_count=args.workers, poll_interval=args.poll_interval)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    pool.start()
    logger.info("Deletion workers running", workers=args.workers, poll_interval=args.poll_interval)
    await stop.wait()

    logger.info("Shutting down deletion workers")
    await pool.stop()
    await redis_manager.close_connections()
    await close_db()
    return 0


def run(argv: list[str] | None = None) -> int:
    """Console entry point."""
    configure_logging(log_level=settings.log_level.value, json_logs=settings.json_logs)
    return asyncio.run(main(argv))


if __name__ == "__main__":
    sys.exit(run())
