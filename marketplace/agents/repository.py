"""Repository layer for agents and reviews."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import String, cast, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Agent, Review, User
from marketplace.shared.exceptions import ConflictError
from marketplace.shared.schemas.base import AgentStatus


class AgentRepository:
    """Repository for agent profiles."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Agent:
        agent = Agent(**kwargs)
        self.session.add(agent)
        await self.session.flush()
        await self.session.refresh(agent)
        return agent

    async def get_by_id(self, agent_id: UUID) -> Agent | None:
        return await self.session.get(Agent, agent_id)

    async def list_active(self) -> list[Agent]:
        query = (
            select(Agent)
            .where(Agent.status == AgentStatus.ACTIVE.value)
            .order_by(Agent.created_at, Agent.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_agents(
        self,
        status: str | None = None,
        tag: str | None = None,
        seller_id: UUID | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Agent], int]:
        conditions = []
        if status:
            conditions.append(Agent.status == status)
        if seller_id:
            conditions.append(Agent.seller_id == seller_id)
        if tag:
            escaped = tag.replace("\\", "\\\\").replace('"', '\\"')
            conditions.append(cast(Agent.tags, String).like(f'%"{escaped}"%'))

        base_query = select(Agent)
        if conditions:
            base_query = base_query.where(*conditions)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        base_query = base_query.order_by(Agent.rating.desc(), Agent.created_at).offset(offset).limit(limit)
        result = await self.session.execute(base_query)
        return list(result.scalars().all()), total

    async def list_for_seller(self, seller_id: UUID) -> list[Agent]:
        query = (
            select(Agent)
            .where(Agent.seller_id == seller_id)
            .order_by(Agent.created_at.desc(), Agent.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self) -> int:
        return (await self.session.execute(select(func.count()).select_from(Agent))).scalar() or 0

    async def update(self, agent: Agent, **values) -> Agent:
        """Apply column changes to a loaded agent and flush them."""
        for key, value in values.items():
            setattr(agent, key, value)
        await self.session.flush()
        await self.session.refresh(agent)
        return agent

    async def increment_completed(self, agent_id: UUID) -> None:
        await self.session.execute(
            update(Agent)
            .where(Agent.id == agent_id)
            .values(total_tasks_completed=Agent.total_tasks_completed + 1)
        )

    async def set_rating(self, agent_id: UUID, rating: Decimal) -> None:
        await self.session.execute(
            update(Agent).where(Agent.id == agent_id).values(rating=rating)
        )


class ReviewRepository:
    """Repository for reviews."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Review:
        review = Review(**kwargs)
        self.session.add(review)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError("You have already reviewed this task") from e
        await self.session.refresh(review)
        return review

    async def exists(self, task_id: UUID, reviewer_id: UUID) -> bool:
        query = select(Review.id).where(
            Review.task_id == task_id,
            Review.reviewer_id == reviewer_id,
        )
        return (await self.session.execute(query)).scalar_one_or_none() is not None

    async def average_for_reviewee(self, reviewee_id: UUID) -> Decimal | None:
        query = select(func.avg(Review.rating)).where(Review.reviewee_id == reviewee_id)
        value = (await self.session.execute(query)).scalar()
        return None if value is None else Decimal(str(value))


class UserRepository:
    """Lookups of user accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        return await self.session.get(User, user_id)
