"""End-to-end tests for the task marketplace over HTTP."""

from decimal import Decimal

import pytest

from tests.factories import agent_key_headers, bearer_headers
from tests.integration.flows import (
    API,
    apply,
    assigned_task,
    completed_task,
    create_task,
    top_up,
    wallet,
)

pytestmark = pytest.mark.integration


# ===========================================
# HAPPY PATH
# ===========================================


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_bid_select_deliver_approve(self, client, buyer, seller, agent_with_key):
        agent, api_key = agent_with_key
        await top_up(client, buyer, "200.00")

        created = await client.post(
            f"{API}/tasks",
            json={
                "title": "Build a CSV parser",
                "description": "Parse and validate CSV uploads",
                "tags": ["python"],
                "max_budget": "100.00",
            },
            headers=bearer_headers(buyer),
        )
        assert created.status_code == 201
        body = created.json()
        assert body["task"]["status"] == "matching"
        assert body["suggestions"][0]["agent"]["id"] == str(agent.id)
        task_id = body["task"]["id"]

        applied = await apply(client, task_id, api_key, "80.00")
        assert applied.status_code == 201
        assert applied.json()["auto_assigned"] is False

        selected = await client.post(
            f"{API}/tasks/{task_id}/select",
            json={"application_id": applied.json()["application"]["id"]},
            headers=bearer_headers(buyer),
        )
        assert selected.status_code == 200
        assert Decimal(selected.json()["assignment"]["agreed_price"]) == Decimal("80.00")
        assert await wallet(client, buyer) == (Decimal("120.00"), Decimal("80.00"))

        started = await client.post(f"{API}/tasks/{task_id}/start", headers=agent_key_headers(api_key))
        assert started.json()["task"]["status"] == "in_progress"

        submitted = await client.post(
            f"{API}/tasks/{task_id}/submit",
            json={"result_text": "Done", "result_files": ["parser.py"]},
            headers=agent_key_headers(api_key),
        )
        assert submitted.status_code == 200
        assert submitted.json()["task"]["status"] == "completed"
        assert submitted.json()["task"]["auto_approve_at"] is not None

        approved = await client.post(f"{API}/tasks/{task_id}/approve", headers=bearer_headers(buyer))
        assert approved.status_code == 200
        data = approved.json()
        assert data["task"]["status"] == "approved"
        assert Decimal(data["escrow_released"]) == Decimal("80.00")
        assert Decimal(data["platform_fee"]) == Decimal("16.00")
        assert Decimal(data["seller_received"]) == Decimal("64.00")

        assert await wallet(client, buyer) == (Decimal("120.00"), Decimal("0.00"))
        assert await wallet(client, seller) == (Decimal("64.00"), Decimal("0.00"))

        ledger = await client.get(f"{API}/wallet/transactions", headers=bearer_headers(buyer))
        types = {item["type"]: Decimal(item["amount"]) for item in ledger.json()["items"]}
        assert types["platform_fee"] == Decimal("16.00")
        assert types["escrow_lock"] == Decimal("80.00")

        profile = await client.get(f"{API}/agents/{agent.id}")
        assert profile.json()["total_tasks_completed"] == 1

    @pytest.mark.asyncio
    async def test_second_approve_is_rejected(self, client, buyer, seller, agent_with_key):
        _, api_key = agent_with_key
        task_id = await completed_task(client, buyer, api_key)
        first = await client.post(f"{API}/tasks/{task_id}/approve", headers=bearer_headers(buyer))
        assert first.status_code == 200

        second = await client.post(f"{API}/tasks/{task_id}/approve", headers=bearer_headers(buyer))

        assert second.status_code == 409
        assert await wallet(client, seller) == (Decimal("64.00"), Decimal("0.00"))

    @pytest.mark.asyncio
    async def test_direct_assign_at_base_price(self, client, buyer, agent_with_key):
        agent, _ = agent_with_key
        await top_up(client, buyer, "100.00")
        task = await create_task(client, buyer)

        resp = await client.post(
            f"{API}/tasks/{task['id']}/assign",
            json={"agent_id": str(agent.id)},
            headers=bearer_headers(buyer),
        )

        assert resp.status_code == 200
        assert Decimal(resp.json()["assignment"]["agreed_price"]) == Decimal("50.00")
        assert await wallet(client, buyer) == (Decimal("50.00"), Decimal("50.00"))


# ===========================================
# FAILURE MODES
# ===========================================


class TestFailureModes:
    @pytest.mark.asyncio
    async def test_insufficient_funds_changes_nothing(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        await top_up(client, buyer, "50.00")
        task = await create_task(client, buyer)
        applied = await apply(client, task["id"], api_key, "80.00")

        resp = await client.post(
            f"{API}/tasks/{task['id']}/select",
            json={"application_id": applied.json()["application"]["id"]},
            headers=bearer_headers(buyer),
        )

        assert resp.status_code == 402
        assert resp.json()["detail"]["type"].endswith("/insufficient_funds")
        assert await wallet(client, buyer) == (Decimal("50.00"), Decimal("0.00"))
        detail = await client.get(f"{API}/tasks/{task['id']}", headers=bearer_headers(buyer))
        assert detail.json()["task"]["status"] == "matching"
        assert detail.json()["assignment"] is None

    @pytest.mark.asyncio
    async def test_agent_cannot_bid_on_own_sellers_task(self, client, seller, agent_with_key):
        _, api_key = agent_with_key
        task = await create_task(client, seller)

        resp = await apply(client, task["id"], api_key, "10.00")

        assert resp.status_code == 403
        assert resp.json()["detail"]["type"].endswith("/self_dealing")

    @pytest.mark.asyncio
    async def test_bid_above_budget(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        task = await create_task(client, buyer, max_budget="20.00")

        resp = await apply(client, task["id"], api_key, "25.00")

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_second_assignment_conflicts(self, client, buyer, agent_with_key):
        agent, api_key = agent_with_key
        task_id = await assigned_task(client, buyer, api_key)

        resp = await client.post(
            f"{API}/tasks/{task_id}/assign",
            json={"agent_id": str(agent.id)},
            headers=bearer_headers(buyer),
        )

        assert resp.status_code == 409
        assert await wallet(client, buyer) == (Decimal("120.00"), Decimal("80.00"))

    @pytest.mark.asyncio
    async def test_buyer_cannot_submit(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        task_id = await assigned_task(client, buyer, api_key)

        resp = await client.post(
            f"{API}/tasks/{task_id}/submit",
            json={"result_text": "Not mine to deliver"},
            headers=bearer_headers(buyer),
        )

        assert resp.status_code == 403


# ===========================================
# AUTO-ASSIGN AND CANCELLATION
# ===========================================


class TestAutoAssign:
    @pytest.mark.asyncio
    async def test_first_bid_is_assigned(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        await top_up(client, buyer, "100.00")
        task = await create_task(client, buyer, auto_assign=True)

        resp = await apply(client, task["id"], api_key, "60.00")

        assert resp.status_code == 201
        assert resp.json()["auto_assigned"] is True
        assert await wallet(client, buyer) == (Decimal("40.00"), Decimal("60.00"))

    @pytest.mark.asyncio
    async def test_unfunded_buyer_keeps_bid_pending(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        task = await create_task(client, buyer, auto_assign=True)

        resp = await apply(client, task["id"], api_key, "60.00")

        assert resp.status_code == 201
        assert resp.json()["auto_assigned"] is False
        assert resp.json()["application"]["status"] == "pending"
        notes = await client.get(f"{API}/notifications", headers=bearer_headers(buyer))
        assert "auto_assign_failed" in {n["event"] for n in notes.json()["items"]}


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_open_task(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        task = await create_task(client, buyer)
        await apply(client, task["id"], api_key, "30.00")

        resp = await client.post(f"{API}/tasks/{task['id']}/cancel", headers=bearer_headers(buyer))

        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        apps = await client.get(f"{API}/tasks/{task['id']}/applications", headers=bearer_headers(buyer))
        assert [a["status"] for a in apps.json()] == ["rejected"]

    @pytest.mark.asyncio
    async def test_cannot_cancel_assigned_task(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        task_id = await assigned_task(client, buyer, api_key)

        resp = await client.post(f"{API}/tasks/{task_id}/cancel", headers=bearer_headers(buyer))

        assert resp.status_code == 409


# ===========================================
# BROWSING AND REVIEWS
# ===========================================


class TestBrowsing:
    @pytest.mark.asyncio
    async def test_available_tasks_scored_for_agent(self, client, buyer, agent_with_key):
        _, api_key = agent_with_key
        await create_task(client, buyer)

        resp = await client.get(f"{API}/tasks/available", headers=agent_key_headers(api_key))

        assert resp.status_code == 200
        items = resp.json()["items"]
        assert len(items) == 1
        assert items[0]["match_score"] == 50

    @pytest.mark.asyncio
    async def test_registered_agent_can_use_its_key(self, client, seller):
        resp = await client.post(
            f"{API}/agents",
            json={"name": "Summarizer", "base_price": "15.00", "tags": ["nlp"]},
            headers=bearer_headers(seller),
        )
        assert resp.status_code == 201
        api_key = resp.json()["api_key"]

        listed = await client.get(f"{API}/tasks/available", headers=agent_key_headers(api_key))
        assert listed.status_code == 200

    @pytest.mark.asyncio
    async def test_review_after_approval_sets_rating(self, client, buyer, agent_with_key):
        agent, api_key = agent_with_key
        task_id = await completed_task(client, buyer, api_key)
        await client.post(f"{API}/tasks/{task_id}/approve", headers=bearer_headers(buyer))

        resp = await client.post(
            f"{API}/reviews",
            json={"task_id": task_id, "rating": 5, "comment": "Great"},
            headers=bearer_headers(buyer),
        )

        assert resp.status_code == 201
        profile = await client.get(f"{API}/agents/{agent.id}")
        assert Decimal(profile.json()["rating"]) == Decimal("5.00")
