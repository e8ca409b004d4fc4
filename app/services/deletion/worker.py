"""Fixed-size pool of asyncio workers polling the deletion queue."""

import asyncio
import socket
import uuid

from app.core.logging import get_logger
from app.services.deletion.orchestrator import DeletionOrchestrator

logger = get_logger(__name__)


def make_worker_token(index: int = 0) -> str:
    """Host name, worker index and a random suffix."""
    return f"{socket.gethostname()}-{index}-{uuid.uuid4().hex[:12]}"


class DeletionWorkerPool:
    """
    N independent polling loops sharing one orchestrator.

    Workers coordinate only through the queue-entry row, so several pools
    (or processes) may run side by side.
    """

    def __init__(
        self,
        orchestrator: DeletionOrchestrator,
        worker_count: int = 2,
        poll_interval: float = 5.0,
    ) -> None:
        self.orchestrator = orchestrator
        self.worker_count = worker_count
        self.poll_interval = poll_interval
        self.tokens = [make_worker_token(i) for i in range(worker_count)]
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._work(token), name=f"deletion-worker-{token}")
            for token in self.tokens
        ]
        logger.info("Deletion worker pool started", workers=self.worker_count)

    async def stop(self, timeout: float | None = None) -> None:
        """
        Ask every worker to finish its current run and exit.

        A run in progress is never interrupted here; an operator who needs
        that uses the emergency stop, which takes effect at a step boundary.
        """
        self._stopping.set()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("Deletion worker pool stopped", abandoned=len(pending))

    async def _work(self, token: str) -> None:
        log = logger.bind(worker=token)
        while not self._stopping.is_set():
            try:
                processed = await self.orchestrator.run_once(token)
            except Exception as e:
                # The entry keeps its heartbeat and is reclaimed after it expires.
                log.error("Deletion worker cycle failed", error=str(e), exc_info=True)
                processed = None

            if processed is not None:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
