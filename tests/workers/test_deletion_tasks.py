"""Tests for the deletion queue task, worker pool and worker entry point."""

import asyncio
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.config import settings
from app.services.deletion.state import DeletionStatus
from app.services.deletion.worker import DeletionWorkerPool, make_worker_token
from workers.celery_app import celery_app
from workers.deletion_worker import parse_args
from workers.tasks.deletion import run_claim_cycle


@pytest.fixture
def mock_orchestrator():
    """Orchestrator double with nothing to claim."""
    orchestrator = MagicMock()
    orchestrator.claim_next = AsyncMock(return_value=None)
    orchestrator.execute = AsyncMock()
    orchestrator.run_once = AsyncMock(return_value=None)
    return orchestrator


class TestRunClaimCycle:
    """Tests for the single claim cycle run by the beat task."""

    async def test_idle_when_nothing_claimable(self, mock_orchestrator):
        result = await run_claim_cycle(mock_orchestrator, "celery-1")

        assert result == {"status": "idle"}
        mock_orchestrator.execute.assert_not_awaited()

    async def test_processes_claimed_entry(self, mock_orchestrator):
        queue_id = uuid4()
        mock_orchestrator.claim_next.return_value = queue_id
        mock_orchestrator.execute.return_value = DeletionStatus.COMPLETED

        result = await run_claim_cycle(mock_orchestrator, "celery-1")

        mock_orchestrator.claim_next.assert_awaited_once_with("celery-1")
        mock_orchestrator.execute.assert_awaited_once_with(queue_id, "celery-1")
        assert result == {"status": "processed", "queue_id": str(queue_id), "result": "completed"}

    async def test_reports_lost_ownership(self, mock_orchestrator):
        mock_orchestrator.claim_next.return_value = uuid4()
        mock_orchestrator.execute.return_value = None

        result = await run_claim_cycle(mock_orchestrator, "celery-1")

        assert result["result"] == "ownership_lost"

    async def test_runs_real_entry(
        self, minimal_factories, minimal_gate, minimal_tables, make_orchestrator
    ):
        """End to end over the minimal schema."""
        tenant, (root, approver) = await minimal_factories.create_tenant_with_roots()
        await minimal_factories.insert_rows(minimal_tables["b"], tenant, 2)
        entry = await minimal_gate.request_deletion(tenant.id, root.id)
        await minimal_gate.decide(entry.id, "approve", approver.id)

        result = await run_claim_cycle(make_orchestrator(), "celery-1")

        assert result == {"status": "processed", "queue_id": str(entry.id), "result": "completed"}


class TestCeleryConfiguration:
    def test_queue_task_is_scheduled(self):
        schedule = celery_app.conf.beat_schedule["process-deletion-queue"]

        assert schedule["task"] == "workers.tasks.deletion.process_deletion_queue"
        assert schedule["schedule"] == settings.deletion_poll_interval_seconds

    def test_lost_workers_are_not_redelivered(self):
        assert celery_app.conf.task_acks_late is False
        assert celery_app.conf.worker_prefetch_multiplier == 1


class TestDeletionWorkerPool:
    """Tests for the asyncio polling pool."""

    def test_worker_tokens_are_unique(self):
        tokens = {make_worker_token(0) for _ in range(20)}

        assert len(tokens) == 20
        assert all("-0-" in token for token in tokens)

    async def test_start_and_stop(self, mock_orchestrator):
        pool = DeletionWorkerPool(mock_orchestrator, worker_count=3, poll_interval=0.01)

        pool.start()
        await asyncio.sleep(0.05)
        assert pool.running
        await pool.stop(timeout=1)

        assert not pool.running
        called_with = {c.args[0] for c in mock_orchestrator.run_once.await_args_list}
        assert called_with == set(pool.tokens)

    async def test_failing_cycle_does_not_kill_worker(self, mock_orchestrator):
        calls = []

        async def run_once(token):
            calls.append(token)
            if len(calls) == 1:
                raise RuntimeError("database unreachable")
            return None

        mock_orchestrator.run_once.side_effect = run_once
        pool = DeletionWorkerPool(mock_orchestrator, worker_count=1, poll_interval=0.01)

        pool.start()
        await asyncio.sleep(0.05)
        await pool.stop(timeout=1)

        assert len(calls) >= 2

    async def test_stop_before_start_is_harmless(self, mock_orchestrator):
        pool = DeletionWorkerPool(mock_orchestrator, worker_count=2)

        await pool.stop()

        assert not pool.running


class TestWorkerArguments:
    def test_defaults_come_from_settings(self):
        args = parse_args([])

        assert args.workers == settings.deletion_worker_count
        assert args.poll_interval == settings.deletion_poll_interval_seconds

    def test_overrides(self):
        args = parse_args(["--workers", "4", "--poll-interval", "0.5"])

        assert args.workers == 4
        assert args.poll_interval == 0.5
