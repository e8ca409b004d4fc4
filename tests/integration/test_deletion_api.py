"""End-to-end tests for the tenant deletion HTTP API."""

from uuid import uuid4

import pytest

from app.core.database import Base
from app.services.deletion.orchestrator import DeletionOrchestrator
from app.services.deletion.plan import RETAINED_TABLES, DeletionPlan, build_default_plan
from app.services.deletion.state import DeletionStatus
from tests.factories import auth_headers

API = "/api/v1"


@pytest.fixture
def keep_users_orchestrator(session_factory, notifier, sleep) -> DeletionOrchestrator:
    """Runs the default plan minus the users step, so callers can still authenticate afterwards."""
    default = build_default_plan()
    plan = DeletionPlan(default.steps[:-1], RETAINED_TABLES | {"users"}, metadata=Base.metadata)
    return DeletionOrchestrator(session_factory, plan, notifier=notifier, sleep=sleep)


@pytest.mark.integration
class TestDeletionLifecycle:
    async def test_request_approve_run(
        self, async_client, factories, orchestrator, gate, recorder
    ):
        tenant, (requester, approver) = await factories.create_tenant_with_roots()
        await factories.populate_tenant(tenant, requester)
        as_requester = auth_headers(requester)
        as_approver = auth_headers(approver)

        dry_run = await async_client.post(f"{API}/tenant/deletion-dry-run", headers=as_requester)
        assert dry_run.status_code == 200
        projection = dry_run.json()
        assert projection["can_proceed"] is True
        assert projection["advisory"] is True
        assert projection["total_records"] > 0

        created = await async_client.post(
            f"{API}/tenant/deletion", json={"reason": "Contract ended"}, headers=as_requester
        )
        assert created.status_code == 201
        queue_id = created.json()["queue_id"]
        assert created.json()["status"] == DeletionStatus.PENDING_APPROVAL.value

        duplicate = await async_client.post(f"{API}/tenant/deletion", headers=as_approver)
        assert duplicate.status_code == 409
        assert duplicate.json()["code"] == "duplicate_request"

        own_view = await async_client.get(f"{API}/deletion-approvals/pending", headers=as_requester)
        assert own_view.json()["items"] == []
        approver_view = await async_client.get(
            f"{API}/deletion-approvals/pending", headers=as_approver
        )
        assert [item["id"] for item in approver_view.json()["items"]] == [queue_id]

        self_approval = await async_client.post(
            f"{API}/deletion-approvals/{queue_id}/approve", headers=as_requester
        )
        assert self_approval.status_code == 403
        assert self_approval.json()["code"] == "forbidden"

        approved = await async_client.post(
            f"{API}/deletion-approvals/{queue_id}/approve",
            json={"comment": "Confirmed with legal"},
            headers=as_approver,
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == DeletionStatus.APPROVED.value
        assert approved.json()["scheduled_for"] is not None

        status_response = await async_client.get(
            f"{API}/tenant/deletion-status", headers=as_requester
        )
        assert status_response.json()["status"] == DeletionStatus.APPROVED.value

        assert str(await orchestrator.run_once("worker-1")) == queue_id

        # The root users are gone with the tenant; check the outcome directly.
        final = await gate.get_status(tenant.id)
        assert final.status == DeletionStatus.COMPLETED.value
        audit = await recorder.get_audit_trail(tenant.id)
        assert sum(row.records_deleted for row in audit) == projection["total_records"]

    async def test_audit_trail_endpoint(self, async_client, factories, keep_users_orchestrator):
        tenant, (requester, approver) = await factories.create_tenant_with_roots()
        expected = await factories.populate_tenant(tenant, requester)
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))
        queue_id = created.json()["queue_id"]
        await async_client.post(
            f"{API}/deletion-approvals/{queue_id}/approve", headers=auth_headers(approver)
        )
        await keep_users_orchestrator.run_once("worker-1")

        response = await async_client.get(
            f"{API}/tenant/deletion-audit-trail", headers=auth_headers(requester)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total_records_deleted"] == sum(expected.values())
        by_table = {item["table_name"]: item["records_deleted"] for item in body["items"]}
        assert by_table == expected

        log = await async_client.get(
            f"{API}/deletion-queue/{queue_id}/log", headers=auth_headers(approver)
        )
        assert log.status_code == 200
        assert log.json()[-1]["message"] == "Tenant deletion completed"

    async def test_reject_restores_tenant(self, async_client, factories):
        tenant, (requester, approver) = await factories.create_tenant_with_roots()
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))
        queue_id = created.json()["queue_id"]

        rejected = await async_client.post(
            f"{API}/deletion-approvals/{queue_id}/reject",
            json={"reason": "Customer renewed"},
            headers=auth_headers(approver),
        )

        assert rejected.status_code == 200
        assert rejected.json()["status"] == DeletionStatus.REJECTED.value
        again = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))
        assert again.status_code == 201

    @pytest.mark.parametrize("body", [{"reason": ""}, {"reason": "   "}, {}, None])
    async def test_reject_needs_reason(self, async_client, factories, body):
        _, (requester, approver) = await factories.create_tenant_with_roots()
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))
        queue_id = created.json()["queue_id"]

        response = await async_client.post(
            f"{API}/deletion-approvals/{queue_id}/reject", json=body, headers=auth_headers(approver)
        )

        assert response.status_code == 422

    async def test_cancel(self, async_client, factories):
        _, (requester, _) = await factories.create_tenant_with_roots()
        await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))

        cancelled = await async_client.post(
            f"{API}/tenant/cancel-deletion", headers=auth_headers(requester)
        )

        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == DeletionStatus.CANCELLED.value
        nothing_left = await async_client.post(
            f"{API}/tenant/cancel-deletion", headers=auth_headers(requester)
        )
        assert nothing_left.status_code == 404

    async def test_emergency_stop_needs_running_entry(self, async_client, factories):
        _, (requester, _) = await factories.create_tenant_with_roots()
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))

        response = await async_client.post(
            f"{API}/deletion-queue/{created.json()['queue_id']}/emergency-stop",
            headers=auth_headers(requester),
        )

        assert response.status_code == 409
        assert response.json()["code"] == "not_running"

    async def test_emergency_stop_halts_run(
        self, async_client, factories, keep_users_orchestrator, gate
    ):
        _, (requester, approver) = await factories.create_tenant_with_roots()
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))
        queue_id = created.json()["queue_id"]
        await async_client.post(
            f"{API}/deletion-approvals/{queue_id}/approve", headers=auth_headers(approver)
        )
        claimed = await keep_users_orchestrator.claim_next("worker-1")

        response = await async_client.post(
            f"{API}/deletion-queue/{queue_id}/emergency-stop", headers=auth_headers(approver)
        )

        assert response.status_code == 200
        assert response.json()["stop_requested"] is True
        assert response.json()["status"] == DeletionStatus.RUNNING.value
        assert await keep_users_orchestrator.execute(claimed, "worker-1") is DeletionStatus.STOPPED
        assert (await gate.get_entry(claimed)).status == DeletionStatus.STOPPED.value


@pytest.mark.integration
class TestDeletionApiErrors:
    async def test_status_without_request(self, async_client, factories):
        _, (root, _) = await factories.create_tenant_with_roots()

        response = await async_client.get(f"{API}/tenant/deletion-status", headers=auth_headers(root))

        assert response.status_code == 404
        assert response.json()["code"] == "queue_entry_not_found"

    async def test_legal_hold_blocks_request(self, async_client, factories):
        tenant, (root, _) = await factories.create_tenant_with_roots()
        await factories.create_legal_hold(tenant)

        response = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(root))

        assert response.status_code == 409
        assert response.json()["code"] == "legal_hold_active"

    async def test_single_root_cannot_request(self, async_client, factories):
        _, (root,) = await factories.create_tenant_with_roots(root_count=1)

        response = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(root))

        assert response.status_code == 409
        assert response.json()["code"] == "insufficient_root_users"

    async def test_log_of_another_tenant_is_forbidden(self, async_client, factories):
        _, (requester, _) = await factories.create_tenant_with_roots()
        _, (outsider, _) = await factories.create_tenant_with_roots()
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))

        response = await async_client.get(
            f"{API}/deletion-queue/{created.json()['queue_id']}/log",
            headers=auth_headers(outsider),
        )

        assert response.status_code == 403

    async def test_root_of_another_tenant_cannot_approve(self, async_client, factories):
        _, (requester, _) = await factories.create_tenant_with_roots()
        _, (outsider, _) = await factories.create_tenant_with_roots()
        created = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(requester))

        response = await async_client.post(
            f"{API}/deletion-approvals/{created.json()['queue_id']}/approve",
            headers=auth_headers(outsider),
        )

        assert response.status_code == 403

    async def test_unknown_queue_entry(self, async_client, factories):
        _, (root, _) = await factories.create_tenant_with_roots()

        response = await async_client.post(
            f"{API}/deletion-approvals/{uuid4()}/approve", headers=auth_headers(root)
        )

        assert response.status_code == 404


@pytest.mark.integration
class TestAuthentication:
    async def test_missing_token(self, async_client):
        response = await async_client.get(f"{API}/tenant/deletion-status")

        assert response.status_code == 401

    async def test_invalid_token(self, async_client):
        response = await async_client.get(
            f"{API}/tenant/deletion-status",
            headers={"Authorization": "Bearer not-a-token", "X-Tenant-ID": str(uuid4())},
        )

        assert response.status_code == 401

    async def test_tenant_mismatch(self, async_client, factories):
        _, (root, _) = await factories.create_tenant_with_roots()

        response = await async_client.get(
            f"{API}/tenant/deletion-status", headers=auth_headers(root, tenant_id=uuid4())
        )

        assert response.status_code == 403

    async def test_regular_user_is_refused(self, async_client, factories):
        tenant, _ = await factories.create_tenant_with_roots()
        employee = await factories.create_user(tenant)

        response = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(employee))

        assert response.status_code == 403
        assert response.json()["detail"] == "Root user role required"

    async def test_deactivated_root_is_refused(self, async_client, factories):
        tenant, _ = await factories.create_tenant_with_roots()
        former = await factories.create_root_user(tenant, is_active=False)

        response = await async_client.post(
            f"{API}/tenant/deletion-dry-run", headers=auth_headers(former)
        )

        assert response.status_code == 403


@pytest.mark.integration
class TestOperationalEndpoints:
    async def test_health_is_public(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_request_id_is_echoed(self, async_client):
        response = await async_client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    async def test_request_id_on_auth_failure(self, async_client):
        response = await async_client.get(f"{API}/tenant/deletion-status")

        assert response.status_code == 401
        assert response.headers["X-Request-ID"]
