"""End-to-end tests for disputes and their resolution."""

from decimal import Decimal

import pytest

from tests.factories import bearer_headers
from tests.integration.flows import API, completed_task, wallet

pytestmark = pytest.mark.integration


async def _open_dispute(client, buyer, api_key) -> tuple[str, str]:
    task_id = await completed_task(client, buyer, api_key)
    resp = await client.post(
        f"{API}/tasks/{task_id}/dispute",
        json={"comment": "The parser drops quoted fields", "evidence": ["sample.csv"]},
        headers=bearer_headers(buyer),
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["status"] == "pending_seller_response"
    return task_id, resp.json()["dispute_id"]


async def _resolve(client, admin, dispute_id: str, **body):
    return await client.post(
        f"{API}/disputes/{dispute_id}/resolve", json=body, headers=bearer_headers(admin)
    )


class TestDisputeWorkflow:
    @pytest.mark.asyncio
    async def test_seller_response_then_full_refund(self, client, buyer, seller, admin, agent_with_key):
        _, api_key = agent_with_key
        task_id, dispute_id = await _open_dispute(client, buyer, api_key)

        responded = await client.post(
            f"{API}/disputes/{dispute_id}/respond",
            json={"comment": "Quoted fields are out of scope"},
            headers=bearer_headers(seller),
        )
        assert responded.status_code == 200
        assert responded.json()["status"] == "pending_admin"

        resolved = await _resolve(client, admin, dispute_id, resolution="full_refund", admin_comment="Buyer wins")

        assert resolved.status_code == 200
        data = resolved.json()
        assert data["dispute"]["status"] == "resolved"
        assert data["dispute"]["resolution"] == "full_refund"
        assert Decimal(data["refund"]["buyer_refund"]) == Decimal("80.00")
        assert Decimal(data["refund"]["platform_fee"]) == Decimal("0.00")
        assert await wallet(client, buyer) == (Decimal("200.00"), Decimal("0.00"))
        assert await wallet(client, seller) == (Decimal("0.00"), Decimal("0.00"))

        task = await client.get(f"{API}/tasks/{task_id}", headers=bearer_headers(buyer))
        assert task.json()["task"]["status"] == "refunded"
        assert task.json()["dispute_id"] == dispute_id

    @pytest.mark.asyncio
    async def test_partial_refund_splits_escrow(self, client, buyer, seller, admin, agent_with_key):
        _, api_key = agent_with_key
        task_id, dispute_id = await _open_dispute(client, buyer, api_key)

        resolved = await _resolve(client, admin, dispute_id, resolution="partial_refund", refund_percentage=50)

        assert resolved.status_code == 200
        refund = resolved.json()["refund"]
        assert Decimal(refund["buyer_refund"]) == Decimal("40.00")
        assert Decimal(refund["seller_received"]) == Decimal("32.00")
        assert Decimal(refund["platform_fee"]) == Decimal("8.00")
        assert await wallet(client, buyer) == (Decimal("160.00"), Decimal("0.00"))
        assert await wallet(client, seller) == (Decimal("32.00"), Decimal("0.00"))

        task = await client.get(f"{API}/tasks/{task_id}", headers=bearer_headers(buyer))
        assert task.json()["task"]["status"] == "approved"

    @pytest.mark.asyncio
    async def test_second_resolution_conflicts(self, client, buyer, seller, admin, agent_with_key):
        _, api_key = agent_with_key
        _, dispute_id = await _open_dispute(client, buyer, api_key)
        first = await _resolve(client, admin, dispute_id, resolution="release")
        assert first.status_code == 200

        second = await _resolve(client, admin, dispute_id, resolution="full_refund")

        assert second.status_code == 409
        assert await wallet(client, seller) == (Decimal("64.00"), Decimal("0.00"))
        assert await wallet(client, buyer) == (Decimal("120.00"), Decimal("0.00"))

    @pytest.mark.asyncio
    async def test_non_admin_cannot_resolve(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        _, dispute_id = await _open_dispute(client, buyer, api_key)

        resp = await _resolve(client, buyer, dispute_id, resolution="full_refund")

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_partial_refund_without_percentage_is_invalid(self, client, buyer, admin, agent_with_key):
        _, api_key = agent_with_key
        _, dispute_id = await _open_dispute(client, buyer, api_key)

        resp = await _resolve(client, admin, dispute_id, resolution="partial_refund")

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_dispute_detail_and_admin_listing(self, client, buyer, admin, agent_with_key):
        agent, api_key = agent_with_key
        _, dispute_id = await _open_dispute(client, buyer, api_key)

        detail = await client.get(f"{API}/disputes/{dispute_id}", headers=bearer_headers(buyer))
        assert detail.status_code == 200
        assert detail.json()["buyer_evidence"] == ["sample.csv"]
        assert detail.json()["agent"]["id"] == str(agent.id)

        listing = await client.get(f"{API}/disputes", headers=bearer_headers(admin))
        assert listing.status_code == 200
        assert listing.json()["total"] == 1

        forbidden = await client.get(f"{API}/disputes", headers=bearer_headers(buyer))
        assert forbidden.status_code == 403
