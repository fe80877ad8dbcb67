"""Service layer for dispute responses and admin resolution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.agents.repository import AgentRepository
from marketplace.disputes.repository import DisputeRepository
from marketplace.disputes.resolver import ResolutionSplit, compute_resolution, validate_resolution
from marketplace.infrastructure.database.models import Dispute
from marketplace.ledger.escrow import EscrowEngine
from marketplace.ledger.repository import LedgerRepository
from marketplace.notifications.service import notify
from marketplace.security.auth import Principal
from marketplace.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from marketplace.shared.schemas.base import AssignmentStatus, DisputeResolution, TaskStatus
from marketplace.shared.utils.logging import get_logger
from marketplace.tasks.repository import TaskAggregate, TaskRepository
from marketplace.tasks.state_machine import validate_transition

logger = get_logger(__name__)

DISPUTE_REF = "dispute"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dispute_status(dispute: Dispute) -> str:
    """Workflow stage shown to the parties."""
    if dispute.resolved_at is not None:
        return "resolved"
    if dispute.seller_comment:
        return "pending_admin"
    return "pending_seller_response"


@dataclass
class DisputeView:
    dispute: Dispute
    aggregate: TaskAggregate

    @property
    def status(self) -> str:
        return dispute_status(self.dispute)


@dataclass
class ResolutionOutcome:
    dispute: Dispute
    aggregate: TaskAggregate
    split: ResolutionSplit


class DisputeService:
    """Seller responses and the admin-only resolver."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.dispute_repo = DisputeRepository(session)
        self.task_repo = TaskRepository(session)
        self.agent_repo = AgentRepository(session)
        self.ledger = LedgerRepository(session)
        self.escrow = EscrowEngine(session)

    async def _locked(self, dispute_id: UUID) -> tuple[Dispute, TaskAggregate]:
        """Lock the task row, then the dispute row."""
        dispute = await self.dispute_repo.get_by_id(dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute", dispute_id)
        aggregate = await self.task_repo.get_task_with_assignment_and_agent(
            dispute.task_id, for_update=True
        )
        dispute = await self.dispute_repo.get_for_update(dispute_id)
        if aggregate is None or dispute is None:
            raise NotFoundError("Dispute", dispute_id)
        return dispute, aggregate

    async def get_dispute(self, dispute_id: UUID, principal: Principal) -> DisputeView:
        """Dispute detail, visible to the buyer, the seller and admins."""
        dispute = await self.dispute_repo.get_by_id(dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute", dispute_id)
        aggregate = await self.task_repo.get_task_with_assignment_and_agent(dispute.task_id)

        is_buyer = aggregate.task.buyer_id == principal.user_id
        is_seller = aggregate.agent is not None and aggregate.agent.seller_id == principal.user_id
        if not (is_buyer or is_seller or principal.is_admin):
            raise ForbiddenError("You don't have access to this dispute")
        return DisputeView(dispute=dispute, aggregate=aggregate)

    async def list_disputes(
        self,
        principal: Principal,
        unresolved_only: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Dispute], int]:
        if not principal.is_admin:
            raise ForbiddenError("Only admins can list disputes")
        return await self.dispute_repo.list_disputes(unresolved_only, offset, limit)

    async def respond(
        self,
        dispute_id: UUID,
        principal: Principal,
        comment: str,
        evidence: list[str] | None = None,
    ) -> Dispute:
        """Record the seller's side of the dispute."""
        if not comment or not comment.strip():
            raise ValidationError("comment is required")

        dispute, aggregate = await self._locked(dispute_id)
        if aggregate.agent is None or aggregate.agent.seller_id != principal.user_id:
            raise ForbiddenError("Only the seller can respond to this dispute")
        if dispute.resolved_at is not None:
            raise ConflictError("Dispute already resolved")

        dispute.seller_comment = comment
        dispute.seller_evidence = list(evidence or [])
        await notify(
            self.session,
            aggregate.task.buyer_id,
            "dispute_response",
            f'The seller responded to your dispute on "{aggregate.task.title}".',
            DISPUTE_REF,
            dispute.id,
        )
        await self.session.flush()
        logger.info("dispute_responded", dispute_id=str(dispute.id), seller_id=str(principal.user_id))
        return dispute

    async def resolve(
        self,
        dispute_id: UUID,
        principal: Principal,
        resolution: str,
        refund_percentage: int | None = None,
        admin_comment: str | None = None,
    ) -> ResolutionOutcome:
        """Rule on a dispute and move the escrowed funds accordingly.

        Resolution is set exactly once; a second attempt is rejected with
        ConflictError and moves no money.
        """
        if not principal.is_admin:
            raise ForbiddenError("Only admins can resolve disputes")
        validate_resolution(resolution, refund_percentage)

        dispute, aggregate = await self._locked(dispute_id)
        if dispute.resolved_at is not None:
            raise ConflictError("Dispute already resolved")
        task = aggregate.task
        assignment = aggregate.assignment
        agent = aggregate.agent
        if assignment is None or agent is None:
            raise ConflictError("No assignment found for this task")
        if task.status != TaskStatus.DISPUTED.value:
            raise ConflictError(f"Task is not under dispute (status: {task.status})")

        target = (
            TaskStatus.REFUNDED.value
            if resolution == DisputeResolution.FULL_REFUND.value
            else TaskStatus.APPROVED.value
        )
        validate_transition(task.status, target)

        price = assignment.agreed_price
        split = compute_resolution(resolution, price, self.escrow.fee_percentage, refund_percentage)
        wallets = await self.ledger.lock_wallets(task.buyer_id, agent.seller_id)
        buyer_wallet = wallets[task.buyer_id]
        seller_wallet = wallets[agent.seller_id]

        if resolution == DisputeResolution.FULL_REFUND.value:
            await self.escrow.refund(buyer_wallet, price, DISPUTE_REF, dispute.id)
        elif resolution == DisputeResolution.RELEASE.value:
            await self.escrow.release(buyer_wallet, seller_wallet, price, DISPUTE_REF, dispute.id)
        else:
            await self.escrow.split(
                buyer_wallet,
                seller_wallet,
                price,
                Decimal(refund_percentage),
                DISPUTE_REF,
                dispute.id,
            )

        now = _utc_now()
        dispute.resolution = resolution
        dispute.refund_percentage = (
            refund_percentage if resolution == DisputeResolution.PARTIAL_REFUND.value else None
        )
        dispute.admin_comment = admin_comment
        dispute.resolved_by = principal.user_id
        dispute.resolved_at = now
        task.status = target
        if target == TaskStatus.APPROVED.value:
            task.approved_at = now
            assignment.status = AssignmentStatus.APPROVED.value
            await self.agent_repo.increment_completed(agent.id)

        message = (
            f'Dispute on "{task.title}" resolved: {resolution.replace("_", " ")}. '
            f"Buyer refund ${split.buyer_refund}, seller payout ${split.seller_net}."
        )
        for user_id in {task.buyer_id, agent.seller_id}:
            await notify(self.session, user_id, "dispute_resolved", message, DISPUTE_REF, dispute.id)

        await self.session.flush()
        logger.info(
            "dispute_resolved",
            dispute_id=str(dispute.id),
            task_id=str(task.id),
            resolution=resolution,
            buyer_refund=str(split.buyer_refund),
            seller_net=str(split.seller_net),
            platform_fee=str(split.platform_fee),
            admin_id=str(principal.user_id),
        )
        return ResolutionOutcome(dispute=dispute, aggregate=aggregate, split=split)
