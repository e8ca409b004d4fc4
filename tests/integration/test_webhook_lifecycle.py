"""Deletion lifecycle with real webhook delivery behind every transition."""

import json

import httpx
import pytest

from app.core.redis import RedisConfig, RedisManager
from app.models.tenant import Tenant, TenantStatus
from app.services.deletion.emergency_stop import EmergencyStopController
from app.services.deletion.notifications import DeletionNotifier
from app.services.deletion.state import ApprovalChoice, DeletionStatus
from tests.factories import auth_headers

API = "/api/v1"


@pytest.fixture
def deliveries() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def notifier(deliveries) -> DeletionNotifier:
    """Real notifier; each hook answers with the status code named in its path."""

    def handler(request: httpx.Request) -> httpx.Response:
        deliveries.append((request.url.path, json.loads(request.content)["event"]))
        return httpx.Response(int(request.url.path.strip("/")))

    cache = RedisManager(RedisConfig.from_settings(host="localhost", port=6379))
    return DeletionNotifier(cache=cache, transport=httpx.MockTransport(handler))


def events_for(deliveries, status_code: int) -> list[str]:
    return [event for path, event in deliveries if path == f"/{status_code}"]


@pytest.mark.integration
class TestWebhookLifecycle:
    @pytest.mark.parametrize("status_code", [200, 500])
    async def test_run_completes_whatever_the_hook_answers(
        self, factories, gate, orchestrator, session_factory, deliveries, status_code
    ):
        tenant, (root, approver) = await factories.create_tenant_with_roots(
            webhook_url=f"https://hooks.example.com/{status_code}"
        )
        await factories.populate_tenant(tenant, root)

        entry = await gate.request_deletion(tenant.id, root.id)
        await gate.decide(entry.id, ApprovalChoice.APPROVE, approver.id)
        assert await orchestrator.run_once("worker-1") == entry.id

        assert (await gate.get_entry(entry.id)).status == DeletionStatus.COMPLETED.value
        async with session_factory() as session:
            deleted = await session.get(Tenant, tenant.id)
        assert deleted.status == TenantStatus.DELETED.value
        assert events_for(deliveries, status_code) == [
            "deletion_requested",
            "deletion_approved",
            "deletion_completed",
        ]

    async def test_stopped_run_is_reported(
        self, factories, gate, orchestrator, session_factory, deliveries
    ):
        tenant, (root, approver) = await factories.create_tenant_with_roots(
            webhook_url="https://hooks.example.com/500"
        )
        entry = await gate.request_deletion(tenant.id, root.id)
        await gate.decide(entry.id, ApprovalChoice.APPROVE, approver.id)
        claimed = await orchestrator.claim_next("worker-1")
        await EmergencyStopController(session_factory).request_stop(claimed, approver.id)

        assert await orchestrator.execute(claimed, "worker-1") is DeletionStatus.STOPPED
        assert events_for(deliveries, 500)[-1] == "deletion_stopped"

    async def test_api_request_succeeds_when_hook_fails(self, async_client, factories, deliveries):
        _, (root, _) = await factories.create_tenant_with_roots(
            webhook_url="https://hooks.example.com/500"
        )

        response = await async_client.post(f"{API}/tenant/deletion", headers=auth_headers(root))

        assert response.status_code == 201
        assert events_for(deliveries, 500) == ["deletion_requested"]
