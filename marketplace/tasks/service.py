"""Service layer for the task lifecycle.

Every state-changing operation locks the task row first, then the wallets it
touches (ascending id order), and performs its status change, escrow calls
and notifications inside the caller's single transaction. Nothing here
commits; the API layer commits once per request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.agents.repository import AgentRepository
from marketplace.disputes.repository import DisputeRepository
from marketplace.infrastructure.database.models import (
    Agent,
    Dispute,
    Task,
    TaskApplication,
    TaskAssignment,
    TaskSuggestion,
)
from marketplace.ledger.escrow import EscrowEngine
from marketplace.ledger.fees import ReleaseBreakdown, to_money
from marketplace.ledger.repository import LedgerRepository
from marketplace.matching.scorer import MatchResult, find_top_matches
from marketplace.notifications.service import notify
from marketplace.security.auth import Principal
from marketplace.shared.exceptions import (
    ConflictError,
    EscrowShortfallError,
    ForbiddenError,
    InsufficientFundsError,
    MarketplaceError,
    NotFoundError,
    SelfDealingError,
    ValidationError,
)
from marketplace.shared.schemas.base import (
    AgentStatus,
    ApplicationStatus,
    AssignmentStatus,
    TaskStatus,
)
from marketplace.shared.utils.logging import get_logger
from marketplace.tasks.config import get_task_settings
from marketplace.tasks.repository import (
    ApplicationRepository,
    AssignmentRepository,
    ResultRepository,
    SuggestionRepository,
    TaskAggregate,
    TaskRepository,
)
from marketplace.tasks.state_machine import (
    ASSIGNABLE_STATES,
    SUBMITTABLE_STATES,
    validate_transition,
)

logger = get_logger(__name__)
settings = get_task_settings()

TASK_REF = "task"
SYSTEM_ACTOR = "system"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApplyOutcome:
    application: TaskApplication
    assignment: TaskAssignment | None = None
    auto_assign_error: str | None = None

    @property
    def auto_assigned(self) -> bool:
        return self.assignment is not None


@dataclass
class AssignmentOutcome:
    task: Task
    assignment: TaskAssignment
    agent: Agent


@dataclass
class ApprovalOutcome:
    task: Task
    assignment: TaskAssignment
    release: ReleaseBreakdown
    actor: str


@dataclass
class PlatformStats:
    total_tasks: int
    open_tasks: int
    completed_tasks: int
    total_agents: int


class TaskService:
    """Handles the task lifecycle and its escrow side effects."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.task_repo = TaskRepository(session)
        self.application_repo = ApplicationRepository(session)
        self.assignment_repo = AssignmentRepository(session)
        self.result_repo = ResultRepository(session)
        self.suggestion_repo = SuggestionRepository(session)
        self.agent_repo = AgentRepository(session)
        self.dispute_repo = DisputeRepository(session)
        self.ledger = LedgerRepository(session)
        self.escrow = EscrowEngine(session)

    # ==========================================
    # HELPERS
    # ==========================================

    async def _locked(self, task_id: UUID) -> TaskAggregate:
        aggregate = await self.task_repo.get_task_with_assignment_and_agent(task_id, for_update=True)
        if aggregate is None:
            raise NotFoundError("Task", task_id)
        return aggregate

    @staticmethod
    def _require_buyer(task: Task, principal: Principal, action: str) -> None:
        if task.buyer_id != principal.user_id:
            raise ForbiddenError(f"Only the task buyer can {action}")

    @staticmethod
    def _require_assigned_agent(aggregate: TaskAggregate, principal: Principal) -> None:
        if aggregate.assignment is None or principal.agent_id != aggregate.assignment.agent_id:
            raise ForbiddenError("You are not assigned to this task")

    async def _get_agent(self, agent_id: UUID | None) -> Agent:
        if agent_id is None:
            raise ForbiddenError("Agent API key required")
        agent = await self.agent_repo.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        return agent

    # ==========================================
    # CREATION AND MATCHING
    # ==========================================

    async def create_task(
        self,
        buyer: Principal,
        title: str,
        description: str,
        max_budget: Decimal,
        tags: list[str] | None = None,
        urgency: str = "normal",
        auto_assign: bool = False,
    ) -> tuple[Task, list[TaskSuggestion]]:
        """Post a task and store the best agent suggestions for it.

        The task moves to ``matching`` when at least one suggestion exists.
        """
        max_budget = to_money(max_budget)
        if max_budget <= 0:
            raise ValidationError("max_budget must be greater than 0")

        task = await self.task_repo.create(
            buyer_id=buyer.user_id,
            title=title,
            description=description,
            tags=sorted(set(tags or [])),
            max_budget=max_budget,
            urgency=urgency,
            auto_assign=auto_assign,
            status=TaskStatus.OPEN.value,
        )

        matches = find_top_matches(task, await self.agent_repo.list_active(), settings.suggestion_limit)
        suggestions: list[TaskSuggestion] = []
        if matches:
            suggestions = await self.suggestion_repo.create_many(task.id, matches)
            validate_transition(task.status, TaskStatus.MATCHING.value)
            task.status = TaskStatus.MATCHING.value

        logger.info(
            "task_created",
            task_id=str(task.id),
            buyer_id=str(buyer.user_id),
            max_budget=str(max_budget),
            suggestions=len(suggestions),
        )
        return task, suggestions

    async def get_live_suggestions(self, task_id: UUID, limit: int | None = None) -> list[tuple[MatchResult, Agent]]:
        """Rank currently active agents for an existing task."""
        task = await self.task_repo.get_by_id(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        agents = await self.agent_repo.list_active()
        by_id = {agent.id: agent for agent in agents}
        matches = find_top_matches(task, agents, limit or settings.suggestion_limit)
        return [(match, by_id[match.agent_id]) for match in matches]

    async def get_stored_suggestions(self, task_id: UUID) -> list[tuple[TaskSuggestion, Agent]]:
        return await self.suggestion_repo.list_for_task(task_id)

    # ==========================================
    # BIDDING AND ASSIGNMENT
    # ==========================================

    async def apply(
        self,
        task_id: UUID,
        principal: Principal,
        bid: Decimal,
        message: str | None = None,
    ) -> ApplyOutcome:
        """Place a bid; on an auto-assign task the bid is accepted at once.

        When the buyer cannot cover an auto-assigned bid the application
        stays pending and the buyer is notified.
        """
        bid = to_money(bid)
        if bid <= 0:
            raise ValidationError("Invalid bid amount")

        agent = await self._get_agent(principal.agent_id)
        aggregate = await self._locked(task_id)
        task = aggregate.task

        if agent.status != AgentStatus.ACTIVE.value:
            raise ForbiddenError(f"Agent is {agent.status} and cannot apply to tasks")
        if task.status not in ASSIGNABLE_STATES:
            raise ConflictError("Task is not available for applications")
        if aggregate.assignment is not None:
            raise ConflictError("Task already assigned to another agent")
        if agent.seller_id == task.buyer_id:
            raise SelfDealingError("Cannot apply to your own task")
        if await self.application_repo.get_for_task_and_agent(task.id, agent.id) is not None:
            raise ConflictError("You have already applied to this task")
        if bid > task.max_budget:
            raise ValidationError(f"Bid exceeds maximum budget of ${task.max_budget}")

        application = await self.application_repo.create(
            task_id=task.id,
            agent_id=agent.id,
            bid_amount=bid,
            message=message,
            status=ApplicationStatus.PENDING.value,
        )
        await notify(
            self.session,
            task.buyer_id,
            "new_application",
            f'Agent {agent.name} applied to your task "{task.title}" with a bid of ${bid}',
            TASK_REF,
            task.id,
        )
        logger.info(
            "application_created",
            task_id=str(task.id),
            agent_id=str(agent.id),
            bid=str(bid),
        )

        outcome = ApplyOutcome(application=application)
        if task.auto_assign:
            try:
                assigned = await self._assign(aggregate, agent, bid, application)
            except InsufficientFundsError as e:
                outcome.auto_assign_error = e.message
                await notify(
                    self.session,
                    task.buyer_id,
                    "auto_assign_failed",
                    f'Could not auto-assign "{task.title}": {e.message}. Top up to accept a bid.',
                    TASK_REF,
                    task.id,
                )
                logger.info("auto_assign_skipped", task_id=str(task.id), reason=e.message)
            else:
                outcome.assignment = assigned.assignment
        await self.session.flush()
        return outcome

    async def select_application(
        self,
        task_id: UUID,
        principal: Principal,
        application_id: UUID,
    ) -> AssignmentOutcome:
        """Accept one bid, reject its siblings and lock escrow at the bid."""
        aggregate = await self._locked(task_id)
        task = aggregate.task
        self._require_buyer(task, principal, "select an agent")

        application = await self.application_repo.get_by_id(application_id)
        if application is None:
            raise NotFoundError("Application", application_id)
        if application.task_id != task.id:
            raise ValidationError("Application does not belong to this task")
        if application.status != ApplicationStatus.PENDING.value:
            raise ConflictError("Application is no longer available")

        agent = await self.agent_repo.get_by_id(application.agent_id)
        if agent is None:
            raise NotFoundError("Agent", application.agent_id)
        return await self._assign(aggregate, agent, application.bid_amount, application)

    async def assign_agent(
        self,
        task_id: UUID,
        principal: Principal,
        agent_id: UUID,
    ) -> AssignmentOutcome:
        """Hire an agent directly at its base price, bypassing bids."""
        aggregate = await self._locked(task_id)
        self._require_buyer(aggregate.task, principal, "assign an agent")

        agent = await self.agent_repo.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        if agent.status != AgentStatus.ACTIVE.value:
            raise ConflictError(f"Agent is {agent.status} and cannot be assigned")
        return await self._assign(aggregate, agent, agent.base_price, None)

    async def _assign(
        self,
        aggregate: TaskAggregate,
        agent: Agent,
        price: Decimal,
        application: TaskApplication | None,
    ) -> AssignmentOutcome:
        """Shared assignment path for select, direct assign and auto-assign."""
        task = aggregate.task
        if aggregate.assignment is not None:
            raise ConflictError("Task is already assigned")
        if task.status not in ASSIGNABLE_STATES:
            raise ConflictError("Task is not available for assignment")
        if agent.seller_id == task.buyer_id:
            raise SelfDealingError()
        validate_transition(task.status, TaskStatus.ASSIGNED.value)

        price = to_money(price)
        buyer_wallet = await self.ledger.get_wallet_for_update(task.buyer_id)
        await self.escrow.lock(buyer_wallet, price, TASK_REF, task.id)

        now = _utc_now()
        assignment = await self.assignment_repo.create(
            task_id=task.id,
            agent_id=agent.id,
            agreed_price=price,
            status=AssignmentStatus.ASSIGNED.value,
        )
        task.status = TaskStatus.ASSIGNED.value
        task.assigned_at = now
        aggregate.assignment = assignment
        aggregate.agent = agent

        if application is not None:
            application.status = ApplicationStatus.ACCEPTED.value
        rejected = await self.application_repo.reject_pending(
            task.id, application.id if application is not None else None
        )

        await notify(
            self.session,
            agent.seller_id,
            "task_assigned",
            f'Your agent {agent.name} was assigned "{task.title}". Price: ${price}',
            TASK_REF,
            task.id,
        )
        logger.info(
            "task_assigned",
            task_id=str(task.id),
            agent_id=str(agent.id),
            agreed_price=str(price),
            via="application" if application is not None else "direct",
            rejected_applications=rejected,
        )
        await self.session.flush()
        return AssignmentOutcome(task=task, assignment=assignment, agent=agent)

    # ==========================================
    # DELIVERY
    # ==========================================

    async def start_work(self, task_id: UUID, principal: Principal) -> TaskAggregate:
        aggregate = await self._locked(task_id)
        self._require_assigned_agent(aggregate, principal)
        validate_transition(aggregate.task.status, TaskStatus.IN_PROGRESS.value)

        now = _utc_now()
        aggregate.task.status = TaskStatus.IN_PROGRESS.value
        aggregate.assignment.status = AssignmentStatus.IN_PROGRESS.value
        aggregate.assignment.started_at = now
        await self.session.flush()
        logger.info("task_started", task_id=str(task_id), agent_id=str(principal.agent_id))
        return aggregate

    async def submit_result(
        self,
        task_id: UUID,
        principal: Principal,
        result_text: str,
        result_files: list[str] | None = None,
    ) -> TaskAggregate:
        """Deliver the work and start the auto-approve clock."""
        if not result_text or not result_text.strip():
            raise ValidationError("result_text is required")

        aggregate = await self._locked(task_id)
        self._require_assigned_agent(aggregate, principal)
        task = aggregate.task
        if task.status not in SUBMITTABLE_STATES:
            raise ConflictError("Task is not in a state that accepts submissions")
        if aggregate.result is not None:
            raise ConflictError("Task already has a submission")
        validate_transition(task.status, TaskStatus.COMPLETED.value)

        now = _utc_now()
        aggregate.result = await self.result_repo.create(
            task_id=task.id,
            result_text=result_text,
            result_files=list(result_files or []),
        )
        task.status = TaskStatus.COMPLETED.value
        task.completed_at = now
        task.auto_approve_at = now + timedelta(hours=settings.auto_approve_hours)
        aggregate.assignment.status = AssignmentStatus.COMPLETED.value
        aggregate.assignment.completed_at = now

        await notify(
            self.session,
            task.buyer_id,
            "task_completed",
            f"Agent {aggregate.agent.name} has submitted deliverables for task: {task.title}. "
            f"Please review and approve or dispute within {settings.auto_approve_hours} hours.",
            TASK_REF,
            task.id,
        )
        await self.session.flush()
        logger.info(
            "task_submitted",
            task_id=str(task.id),
            agent_id=str(aggregate.assignment.agent_id),
            auto_approve_at=task.auto_approve_at.isoformat(),
        )
        return aggregate

    # ==========================================
    # APPROVAL
    # ==========================================

    async def approve(self, task_id: UUID, principal: Principal) -> ApprovalOutcome:
        """Buyer accepts the result; escrow is released net of the fee."""
        aggregate = await self._locked(task_id)
        self._require_buyer(aggregate.task, principal, "approve this task")
        return await self._approve(aggregate, actor=str(principal.user_id))

    async def _approve(self, aggregate: TaskAggregate, actor: str) -> ApprovalOutcome:
        task = aggregate.task
        if task.status != TaskStatus.COMPLETED.value:
            raise ConflictError(f"Task must be completed before approval (status: {task.status})")
        if aggregate.assignment is None or aggregate.agent is None:
            raise ConflictError("No assignment found for this task")
        validate_transition(task.status, TaskStatus.APPROVED.value)

        assignment = aggregate.assignment
        agent = aggregate.agent
        wallets = await self.ledger.lock_wallets(task.buyer_id, agent.seller_id)
        release = await self.escrow.release(
            wallets[task.buyer_id],
            wallets[agent.seller_id],
            assignment.agreed_price,
            TASK_REF,
            task.id,
        )

        task.status = TaskStatus.APPROVED.value
        task.approved_at = _utc_now()
        assignment.status = AssignmentStatus.APPROVED.value
        await self.agent_repo.increment_completed(agent.id)

        await notify(
            self.session,
            agent.seller_id,
            "payment_released",
            f'Task "{task.title}" was approved. You received ${release.seller_net} '
            f"(platform fee ${release.platform_fee}).",
            TASK_REF,
            task.id,
        )
        await self.session.flush()
        logger.info(
            "task_approved",
            task_id=str(task.id),
            actor=actor,
            gross=str(release.gross),
            seller_net=str(release.seller_net),
            platform_fee=str(release.platform_fee),
        )
        return ApprovalOutcome(task=task, assignment=assignment, release=release, actor=actor)

    async def auto_approve_due(
        self,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[UUID]:
        """Approve completed tasks whose auto-approve deadline has passed.

        Runs the same approval path as a buyer approval. A task that fails
        its checks is logged and left for the next sweep. A task whose escrow
        cannot cover the release is taken out of the sweep and left for an
        admin.
        """
        now = now or _utc_now()
        overdue = await self.task_repo.list_overdue_for_update(now, limit or settings.auto_approve_batch_size)
        approved: list[UUID] = []
        for task in overdue:
            aggregate = await self.task_repo.get_task_with_assignment_and_agent(task.id, for_update=True)
            try:
                await self._approve(aggregate, actor=SYSTEM_ACTOR)
            except EscrowShortfallError as e:
                logger.critical(
                    "auto_approve_ledger_inconsistency",
                    task_id=str(task.id),
                    buyer_id=str(task.buyer_id),
                    error=e.message,
                )
                task.auto_approve_at = None
                await self.session.flush()
                continue
            except MarketplaceError as e:
                logger.error("auto_approve_failed", task_id=str(task.id), error=e.message)
                continue
            approved.append(task.id)
        if overdue:
            logger.info("auto_approve_sweep", due=len(overdue), approved=len(approved))
        return approved

    # ==========================================
    # DISPUTE AND CANCELLATION
    # ==========================================

    async def open_dispute(
        self,
        task_id: UUID,
        principal: Principal,
        comment: str,
        evidence: list[str] | None = None,
    ) -> Dispute:
        """Buyer challenges a completed result; funds stay in escrow."""
        if not comment or not comment.strip():
            raise ValidationError("comment is required")

        aggregate = await self._locked(task_id)
        task = aggregate.task
        self._require_buyer(task, principal, "create a dispute")
        if aggregate.dispute is not None:
            raise ConflictError("A dispute already exists for this task")
        if task.status != TaskStatus.COMPLETED.value:
            raise ConflictError("Only completed tasks can be disputed")
        validate_transition(task.status, TaskStatus.DISPUTED.value)

        dispute = await self.dispute_repo.create(
            task_id=task.id,
            buyer_comment=comment,
            buyer_evidence=list(evidence or []),
        )
        task.status = TaskStatus.DISPUTED.value
        if aggregate.assignment is not None:
            aggregate.assignment.status = AssignmentStatus.DISPUTED.value
        if aggregate.agent is not None:
            await notify(
                self.session,
                aggregate.agent.seller_id,
                "task_disputed",
                f'The buyer disputed your result for "{task.title}". Respond before an admin rules.',
                "dispute",
                dispute.id,
            )
        await self.session.flush()
        logger.info("dispute_opened", task_id=str(task.id), dispute_id=str(dispute.id))
        return dispute

    async def cancel(self, task_id: UUID, principal: Principal) -> Task:
        """Withdraw an unassigned task; pending bids are rejected."""
        aggregate = await self._locked(task_id)
        task = aggregate.task
        self._require_buyer(task, principal, "cancel this task")
        validate_transition(task.status, TaskStatus.CANCELLED.value)

        task.status = TaskStatus.CANCELLED.value
        rejected = await self.application_repo.reject_pending(task.id)
        await self.session.flush()
        logger.info("task_cancelled", task_id=str(task.id), rejected_applications=rejected)
        return task

    # ==========================================
    # READS
    # ==========================================

    async def get_task_with_assignment_and_agent(self, task_id: UUID) -> TaskAggregate:
        aggregate = await self.task_repo.get_task_with_assignment_and_agent(task_id)
        if aggregate is None:
            raise NotFoundError("Task", task_id)
        return aggregate

    async def list_tasks(
        self,
        status: str | None = None,
        tag: str | None = None,
        buyer_id: UUID | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Task], int]:
        return await self.task_repo.list_tasks(
            status=status, tag=tag, buyer_id=buyer_id, offset=offset, limit=limit
        )

    async def list_available(
        self,
        principal: Principal | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[tuple[Task, int]], int]:
        """Open tasks with the calling agent's tag affinity (0-100), best first.

        Every assignable task is scored before the page is cut so that the
        ranking holds across pages. Ties keep newest-first order.
        """
        tasks, total = await self.task_repo.list_tasks(
            statuses=sorted(ASSIGNABLE_STATES), limit=None
        )
        agent_tags: set[str] = set()
        if principal is not None and principal.agent_id is not None:
            agent = await self.agent_repo.get_by_id(principal.agent_id)
            if agent is not None:
                agent_tags = set(agent.tags or [])

        scored = [(task, _tag_affinity(task.tags, agent_tags)) for task in tasks]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[offset : offset + limit], total

    async def get_stats(self) -> PlatformStats:
        """Public counters; delivered work counts whether approved or not."""
        by_status = await self.task_repo.count_by_status()
        return PlatformStats(
            total_tasks=sum(by_status.values()),
            open_tasks=by_status.get(TaskStatus.OPEN.value, 0),
            completed_tasks=by_status.get(TaskStatus.COMPLETED.value, 0)
            + by_status.get(TaskStatus.APPROVED.value, 0),
            total_agents=await self.agent_repo.count(),
        )

    async def list_applications(
        self,
        task_id: UUID,
        principal: Principal,
    ) -> list[tuple[TaskApplication, Agent]]:
        task = await self.task_repo.get_by_id(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        if task.buyer_id != principal.user_id and not principal.is_admin:
            raise ForbiddenError("Only the task buyer can view applications")
        return await self.application_repo.list_for_task(task_id)


def _tag_affinity(task_tags: list[str] | None, agent_tags: set[str]) -> int:
    task_set = set(task_tags or [])
    if not task_set or not agent_tags:
        return 0
    overlap = len(task_set & agent_tags)
    return round(overlap / max(len(task_set), len(agent_tags)) * 100)

