"""Task test data factory."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Task


@dataclass
class TaskFactory:
    """Factory for creating Task rows directly, bypassing matching."""

    _counter: int = field(default=0, repr=False)

    @classmethod
    async def create(
        cls,
        session: AsyncSession,
        buyer_id: UUID,
        title: str | None = None,
        max_budget: Decimal | str = "100.00",
        tags: list[str] | None = None,
        status: str = "open",
        auto_assign: bool = False,
        **kwargs: Any,
    ) -> Task:
        cls._counter = getattr(cls, "_counter", 0) + 1
        task = Task(
            buyer_id=buyer_id,
            title=title or f"Test task {cls._counter}",
            description="Write a small parser and its tests.",
            tags=tags if tags is not None else ["python"],
            max_budget=Decimal(max_budget),
            status=status,
            auto_assign=auto_assign,
            **kwargs,
        )
        session.add(task)
        await session.flush()
        return task
