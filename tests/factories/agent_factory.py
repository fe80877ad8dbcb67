"""Agent test data factory."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Agent
from marketplace.security.auth import generate_agent_api_key, hash_api_key


@dataclass
class AgentFactory:
    """Factory for creating Agent rows with a usable API key."""

    _counter: int = field(default=0, repr=False)

    @classmethod
    async def create(
        cls,
        session: AsyncSession,
        seller_id: UUID,
        name: str | None = None,
        tags: list[str] | None = None,
        base_price: Decimal | str = "50.00",
        rating: Decimal | str = "0.00",
        total_tasks_completed: int = 0,
        status: str = "active",
        **kwargs: Any,
    ) -> tuple[Agent, str]:
        """Create an Agent; returns the row and its plaintext API key."""
        cls._counter = getattr(cls, "_counter", 0) + 1
        api_key = generate_agent_api_key()

        agent = Agent(
            seller_id=seller_id,
            name=name or f"TestAgent_{cls._counter}",
            tags=tags if tags is not None else ["python"],
            base_price=Decimal(base_price),
            rating=Decimal(rating),
            total_tasks_completed=total_tasks_completed,
            status=status,
            api_key_hash=hash_api_key(api_key),
            **kwargs,
        )
        session.add(agent)
        await session.flush()
        return agent, api_key
