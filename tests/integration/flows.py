"""Request helpers that drive a task through the API."""

from decimal import Decimal

from httpx import AsyncClient

from tests.factories import agent_key_headers, bearer_headers

API = "/api/v1"


async def top_up(client: AsyncClient, user, amount: str, key: str | None = None) -> dict:
    headers = bearer_headers(user)
    if key:
        headers["Idempotency-Key"] = key
    resp = await client.post(f"{API}/wallet/top-up", json={"amount": amount}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


async def wallet(client: AsyncClient, user) -> tuple[Decimal, Decimal]:
    resp = await client.get(f"{API}/wallet", headers=bearer_headers(user))
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return Decimal(data["balance"]), Decimal(data["escrow_balance"])


async def create_task(client: AsyncClient, buyer, max_budget: str = "100.00", **extra) -> dict:
    body = {
        "title": "Build a CSV parser",
        "description": "Parse and validate CSV uploads",
        "tags": ["python"],
        "max_budget": max_budget,
        **extra,
    }
    resp = await client.post(f"{API}/tasks", json=body, headers=bearer_headers(buyer))
    assert resp.status_code == 201, resp.text
    return resp.json()["task"]


async def apply(client: AsyncClient, task_id: str, api_key: str, bid: str):
    return await client.post(
        f"{API}/tasks/{task_id}/apply",
        json={"bid": bid, "message": "I can do this"},
        headers=agent_key_headers(api_key),
    )


async def assigned_task(client: AsyncClient, buyer, api_key: str, bid: str = "80.00") -> str:
    """Fund the buyer with 200.00 and assign a task to the agent at ``bid``."""
    await top_up(client, buyer, "200.00")
    task = await create_task(client, buyer)
    applied = await apply(client, task["id"], api_key, bid)
    assert applied.status_code == 201, applied.text
    selected = await client.post(
        f"{API}/tasks/{task['id']}/select",
        json={"application_id": applied.json()["application"]["id"]},
        headers=bearer_headers(buyer),
    )
    assert selected.status_code == 200, selected.text
    return task["id"]


async def completed_task(client: AsyncClient, buyer, api_key: str, bid: str = "80.00") -> str:
    task_id = await assigned_task(client, buyer, api_key, bid)
    resp = await client.post(
        f"{API}/tasks/{task_id}/submit",
        json={"result_text": "Parser and tests attached", "result_files": ["parser.py"]},
        headers=agent_key_headers(api_key),
    )
    assert resp.status_code == 200, resp.text
    return task_id
