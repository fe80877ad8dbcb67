"""Service layer for agent profiles, agent self-service and reviews."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.agents.repository import AgentRepository, ReviewRepository
from marketplace.infrastructure.database.models import (
    Agent,
    Review,
    Task,
    TaskApplication,
    TaskAssignment,
    Wallet,
)
from marketplace.ledger.fees import to_money
from marketplace.ledger.repository import LedgerRepository
from marketplace.security.auth import Principal, generate_agent_api_key, hash_api_key
from marketplace.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from marketplace.shared.schemas.base import AgentStatus, AssignmentStatus, TaskStatus
from marketplace.shared.utils.logging import get_logger
from marketplace.tasks.repository import (
    ApplicationRepository,
    AssignmentRepository,
    TaskRepository,
)

logger = get_logger(__name__)

RATING_STEP = Decimal("0.01")
UPDATABLE_FIELDS = ("name", "description", "tags", "base_price", "status")
SELF_SERVICE_STATUSES = frozenset({AgentStatus.ACTIVE.value, AgentStatus.INACTIVE.value})
ACTIVE_ASSIGNMENT_STATES = [AssignmentStatus.ASSIGNED.value, AssignmentStatus.IN_PROGRESS.value]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AgentProfile:
    agent: Agent
    wallet: Wallet
    active_assignments: list[tuple[TaskAssignment, Task]]


class AgentService:
    """Agent registration, self-service management, browsing and reviews."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.agent_repo = AgentRepository(session)
        self.review_repo = ReviewRepository(session)
        self.task_repo = TaskRepository(session)
        self.application_repo = ApplicationRepository(session)
        self.assignment_repo = AssignmentRepository(session)
        self.ledger = LedgerRepository(session)

    async def register_agent(
        self,
        seller: Principal,
        name: str,
        base_price: Decimal,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> tuple[Agent, str]:
        """Create an agent for the seller.

        Returns the agent and its plaintext API key; only the key's hash is
        stored, so the key cannot be shown again.
        """
        if seller.agent_id is not None:
            raise ForbiddenError("Agents cannot register other agents")
        base_price = to_money(base_price)
        if base_price <= 0:
            raise ValidationError("base_price must be greater than 0")

        api_key = generate_agent_api_key()
        agent = await self.agent_repo.create(
            seller_id=seller.user_id,
            name=name,
            description=description,
            tags=sorted(set(tags or [])),
            base_price=base_price,
            status=AgentStatus.ACTIVE.value,
            api_key_hash=hash_api_key(api_key),
        )
        logger.info("agent_registered", agent_id=str(agent.id), seller_id=str(seller.user_id))
        return agent, api_key

    async def get_agent(self, agent_id: UUID) -> Agent:
        agent = await self.agent_repo.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        return agent

    async def list_agents(
        self,
        status: str | None = None,
        tag: str | None = None,
        seller_id: UUID | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Agent], int]:
        return await self.agent_repo.list_agents(status, tag, seller_id, offset, limit)

    async def list_seller_agents(self, principal: Principal) -> list[Agent]:
        return await self.agent_repo.list_for_seller(principal.user_id)

    # ==========================================
    # SELF-SERVICE
    # ==========================================

    async def _owned_agent(self, agent_id: UUID, principal: Principal) -> Agent:
        agent = await self.get_agent(agent_id)
        if principal.agent_id is not None:
            if principal.agent_id != agent.id:
                raise ForbiddenError("An agent key can only manage its own agent")
        elif agent.seller_id != principal.user_id:
            raise ForbiddenError("You don't own this agent")
        return agent

    @staticmethod
    def _calling_agent_id(principal: Principal) -> UUID:
        if principal.agent_id is None:
            raise ForbiddenError("Agent API key required")
        return principal.agent_id

    async def update_agent(
        self,
        agent_id: UUID,
        principal: Principal,
        changes: dict[str, Any],
    ) -> Agent:
        """Change an agent's profile fields.

        Only ``active`` and ``inactive`` can be set here; suspension is an
        admin decision and cannot be lifted by the owner.
        """
        values = {key: changes[key] for key in UPDATABLE_FIELDS if key in changes}
        if not values:
            raise ValidationError(f"No valid fields to update. Supported: {', '.join(UPDATABLE_FIELDS)}")

        agent = await self._owned_agent(agent_id, principal)
        if "name" in values and not values["name"]:
            raise ValidationError("name must not be empty")
        if "base_price" in values:
            if values["base_price"] is None or to_money(values["base_price"]) <= 0:
                raise ValidationError("base_price must be greater than 0")
            values["base_price"] = to_money(values["base_price"])
        if "tags" in values:
            values["tags"] = sorted(set(values["tags"] or []))
        if "status" in values:
            if values["status"] not in SELF_SERVICE_STATUSES:
                raise ValidationError("status must be 'active' or 'inactive'")
            if agent.status == AgentStatus.SUSPENDED.value:
                raise ForbiddenError("Agent is suspended")

        agent = await self.agent_repo.update(agent, **values)
        logger.info("agent_updated", agent_id=str(agent.id), fields=sorted(values))
        return agent

    async def heartbeat(self, principal: Principal) -> Agent:
        """Mark the calling agent online and ready for work."""
        agent = await self.get_agent(self._calling_agent_id(principal))
        agent = await self.agent_repo.update(
            agent,
            status=AgentStatus.ACTIVE.value,
            last_seen_at=_utc_now(),
        )
        logger.debug("agent_heartbeat", agent_id=str(agent.id))
        return agent

    async def regenerate_api_key(
        self,
        principal: Principal,
        agent_id: UUID | None = None,
    ) -> tuple[Agent, str]:
        """Issue a fresh API key; the previous key stops working at commit.

        An agent key rotates itself. A seller authenticated by token names
        the agent to rotate.
        """
        if principal.agent_id is None and agent_id is None:
            raise ValidationError("agent_id is required unless authenticating with an agent key")
        agent = await self._owned_agent(agent_id or principal.agent_id, principal)
        if agent.status == AgentStatus.SUSPENDED.value:
            raise ForbiddenError("Agent is suspended")

        api_key = generate_agent_api_key()
        agent = await self.agent_repo.update(agent, api_key_hash=hash_api_key(api_key))
        logger.info("agent_api_key_rotated", agent_id=str(agent.id), seller_id=str(agent.seller_id))
        return agent, api_key

    async def get_profile(self, principal: Principal) -> AgentProfile:
        """The calling agent, its seller's wallet and its unfinished assignments."""
        agent = await self.get_agent(self._calling_agent_id(principal))
        return AgentProfile(
            agent=agent,
            wallet=await self.ledger.get_wallet(agent.seller_id),
            active_assignments=await self.assignment_repo.list_for_agent(
                agent.id, ACTIVE_ASSIGNMENT_STATES
            ),
        )

    async def list_my_applications(self, principal: Principal) -> list[tuple[TaskApplication, Task]]:
        return await self.application_repo.list_for_agent(self._calling_agent_id(principal))

    # ==========================================
    # REVIEWS
    # ==========================================

    async def submit_review(
        self,
        task_id: UUID,
        reviewer: Principal,
        rating: int,
        comment: str | None = None,
    ) -> Review:
        """Review the other party of an approved task.

        A review of the seller recomputes the agent's rating as the average
        of every review the seller has received.
        """
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        aggregate = await self.task_repo.get_task_with_assignment_and_agent(task_id)
        if aggregate is None:
            raise NotFoundError("Task", task_id)
        task, agent = aggregate.task, aggregate.agent
        if task.status != TaskStatus.APPROVED.value:
            raise ConflictError("Can only review approved tasks")
        if agent is None:
            raise ConflictError("No assignment found for this task")

        if task.buyer_id == reviewer.user_id:
            reviewee_id = agent.seller_id
        elif agent.seller_id == reviewer.user_id:
            reviewee_id = task.buyer_id
        else:
            raise ForbiddenError("You can only review tasks you're involved in")

        if await self.review_repo.exists(task.id, reviewer.user_id):
            raise ConflictError("You have already reviewed this task")

        review = await self.review_repo.create(
            task_id=task.id,
            reviewer_id=reviewer.user_id,
            reviewee_id=reviewee_id,
            rating=rating,
            comment=comment,
        )

        if reviewee_id == agent.seller_id:
            average = await self.review_repo.average_for_reviewee(reviewee_id)
            if average is not None:
                new_rating = average.quantize(RATING_STEP, rounding=ROUND_HALF_UP)
                await self.agent_repo.set_rating(agent.id, new_rating)
                logger.info("agent_rating_updated", agent_id=str(agent.id), rating=str(new_rating))

        logger.info(
            "review_created",
            review_id=str(review.id),
            task_id=str(task.id),
            reviewer_id=str(reviewer.user_id),
            rating=rating,
        )
        return review
