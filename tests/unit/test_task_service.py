"""Service-level tests for the task lifecycle and its escrow effects."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from marketplace.agents.repository import AgentRepository
from marketplace.infrastructure.database.models import (
    Notification,
    TaskApplication,
    TaskAssignment,
    Wallet,
)
from marketplace.ledger.repository import LedgerRepository
from marketplace.security.auth import Principal
from marketplace.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    SelfDealingError,
    ValidationError,
)
from marketplace.tasks.repository import TaskRepository
from marketplace.tasks.service import TaskService
from tests.factories import AgentFactory, TaskFactory, UserFactory


async def _wallet(session, user_id) -> Wallet:
    return await LedgerRepository(session).get_wallet(user_id)


@pytest_asyncio.fixture
async def parties(db_session):
    buyer = await UserFactory.create(db_session, username="buyer")
    seller = await UserFactory.create(db_session, username="seller")
    agent, _ = await AgentFactory.create(db_session, seller_id=seller.id, tags=["python"])
    await UserFactory.fund(db_session, buyer, "200.00")
    await db_session.commit()
    return {
        "buyer": buyer,
        "seller": seller,
        "agent": agent,
        "buyer_p": Principal(user_id=buyer.id, role="human"),
        "agent_p": Principal(user_id=seller.id, role="agent", agent_id=agent.id),
    }


async def _assigned_task(db_session, parties, bid: str = "80.00"):
    service = TaskService(db_session)
    task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
    outcome = await service.apply(task.id, parties["agent_p"], Decimal(bid))
    await service.select_application(task.id, parties["buyer_p"], outcome.application.id)
    return task


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_create_stores_suggestions_and_moves_to_matching(self, db_session, parties):
        service = TaskService(db_session)
        task, suggestions = await service.create_task(
            buyer=parties["buyer_p"],
            title="Parser",
            description="Write a parser",
            max_budget=Decimal("100"),
            tags=["python"],
        )
        assert task.status == "matching"
        assert [s.agent_id for s in suggestions] == [parties["agent"].id]

    @pytest.mark.asyncio
    async def test_create_without_agents_stays_open(self, db_session):
        buyer = await UserFactory.create(db_session)
        service = TaskService(db_session)
        task, suggestions = await service.create_task(
            buyer=Principal(user_id=buyer.id, role="human"),
            title="Lonely",
            description="Nobody is here",
            max_budget=Decimal("10"),
        )
        assert task.status == "open"
        assert suggestions == []


class TestApplyAndAssign:
    @pytest.mark.asyncio
    async def test_bid_over_budget_rejected(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id, max_budget="100.00")
        with pytest.raises(ValidationError, match="Bid exceeds maximum budget"):
            await TaskService(db_session).apply(task.id, parties["agent_p"], Decimal("100.01"))

    @pytest.mark.asyncio
    async def test_duplicate_application_conflicts(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        service = TaskService(db_session)
        await service.apply(task.id, parties["agent_p"], Decimal("50"))
        with pytest.raises(ConflictError):
            await service.apply(task.id, parties["agent_p"], Decimal("40"))

    @pytest.mark.asyncio
    async def test_buyer_cannot_hire_own_agent(self, db_session, parties):
        own_agent, _ = await AgentFactory.create(db_session, seller_id=parties["buyer"].id)
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        with pytest.raises(SelfDealingError):
            await TaskService(db_session).assign_agent(task.id, parties["buyer_p"], own_agent.id)

    @pytest.mark.asyncio
    async def test_agent_cannot_bid_on_own_sellers_task(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["seller"].id)
        with pytest.raises(SelfDealingError):
            await TaskService(db_session).apply(task.id, parties["agent_p"], Decimal("10"))

    @pytest.mark.asyncio
    async def test_select_locks_escrow_and_rejects_other_bids(self, db_session, parties):
        other_seller = await UserFactory.create(db_session)
        other_agent, _ = await AgentFactory.create(db_session, seller_id=other_seller.id)
        other_p = Principal(user_id=other_seller.id, role="agent", agent_id=other_agent.id)

        service = TaskService(db_session)
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        chosen = await service.apply(task.id, parties["agent_p"], Decimal("80"))
        loser = await service.apply(task.id, other_p, Decimal("70"))

        outcome = await service.select_application(task.id, parties["buyer_p"], chosen.application.id)

        assert outcome.task.status == "assigned"
        assert outcome.assignment.agreed_price == Decimal("80.00")
        wallet = await _wallet(db_session, parties["buyer"].id)
        assert wallet.balance == Decimal("120.00")
        assert wallet.escrow_balance == Decimal("80.00")
        await db_session.refresh(loser.application)
        assert loser.application.status == "rejected"
        assert chosen.application.status == "accepted"

    @pytest.mark.asyncio
    async def test_second_assignment_conflicts(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        with pytest.raises(ConflictError):
            await TaskService(db_session).assign_agent(task.id, parties["buyer_p"], parties["agent"].id)

    @pytest.mark.asyncio
    async def test_racing_assignments_lock_escrow_once(self, session_factory, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        await db_session.commit()

        async with session_factory() as first, session_factory() as second:
            first_view = await TaskRepository(first).get_task_with_assignment_and_agent(task.id)
            second_view = await TaskRepository(second).get_task_with_assignment_and_agent(task.id)
            first_agent = await AgentRepository(first).get_by_id(parties["agent"].id)
            second_agent = await AgentRepository(second).get_by_id(parties["agent"].id)

            await TaskService(first)._assign(first_view, first_agent, Decimal("50"), None)
            await first.commit()

            # The second view still sees an open, unassigned task.
            with pytest.raises(ConflictError, match="already been assigned"):
                await TaskService(second)._assign(second_view, second_agent, Decimal("50"), None)
            await second.rollback()

        async with session_factory() as check:
            count = (
                await check.execute(
                    select(func.count()).select_from(TaskAssignment).where(TaskAssignment.task_id == task.id)
                )
            ).scalar_one()
            wallet = await _wallet(check, parties["buyer"].id)
        assert count == 1
        assert wallet.balance == Decimal("150.00")
        assert wallet.escrow_balance == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_task_open(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id, max_budget="500.00")
        service = TaskService(db_session)
        outcome = await service.apply(task.id, parties["agent_p"], Decimal("250"))

        with pytest.raises(InsufficientFundsError):
            await service.select_application(task.id, parties["buyer_p"], outcome.application.id)

        assert task.status == "open"
        wallet = await _wallet(db_session, parties["buyer"].id)
        assert wallet.balance == Decimal("200.00")
        assert wallet.escrow_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_only_buyer_selects(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        service = TaskService(db_session)
        outcome = await service.apply(task.id, parties["agent_p"], Decimal("10"))
        stranger = Principal(user_id=parties["seller"].id, role="human")
        with pytest.raises(ForbiddenError):
            await service.select_application(task.id, stranger, outcome.application.id)


class TestAutoAssign:
    @pytest.mark.asyncio
    async def test_auto_assign_accepts_first_bid(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id, auto_assign=True)
        outcome = await TaskService(db_session).apply(task.id, parties["agent_p"], Decimal("60"))

        assert outcome.auto_assigned is True
        assert task.status == "assigned"
        assert outcome.application.status == "accepted"

    @pytest.mark.asyncio
    async def test_auto_assign_without_funds_keeps_application_pending(self, db_session, parties):
        task = await TaskFactory.create(
            db_session, buyer_id=parties["buyer"].id, auto_assign=True, max_budget="500.00"
        )
        outcome = await TaskService(db_session).apply(task.id, parties["agent_p"], Decimal("300"))

        assert outcome.auto_assigned is False
        assert outcome.auto_assign_error
        assert outcome.application.status == "pending"
        assert task.status == "open"
        events = (
            await db_session.execute(
                select(Notification.event).where(Notification.user_id == parties["buyer"].id)
            )
        ).scalars().all()
        assert "auto_assign_failed" in events


class TestDeliveryAndApproval:
    @pytest.mark.asyncio
    async def test_submit_then_approve_pays_seller(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        service = TaskService(db_session)
        await service.start_work(task.id, parties["agent_p"])
        aggregate = await service.submit_result(task.id, parties["agent_p"], "done", ["out.txt"])
        assert aggregate.task.status == "completed"
        assert aggregate.task.auto_approve_at - aggregate.task.completed_at == timedelta(hours=24)

        outcome = await service.approve(task.id, parties["buyer_p"])

        assert outcome.task.status == "approved"
        assert outcome.release.seller_net == Decimal("64.00")
        assert outcome.release.platform_fee == Decimal("16.00")
        seller_wallet = await _wallet(db_session, parties["seller"].id)
        assert seller_wallet.balance == Decimal("64.00")
        buyer_wallet = await _wallet(db_session, parties["buyer"].id)
        assert buyer_wallet.escrow_balance == Decimal("0.00")
        await db_session.refresh(parties["agent"])
        assert parties["agent"].total_tasks_completed == 1

    @pytest.mark.asyncio
    async def test_double_approve_conflicts_and_moves_no_money(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        service = TaskService(db_session)
        await service.submit_result(task.id, parties["agent_p"], "done")
        await service.approve(task.id, parties["buyer_p"])

        with pytest.raises(ConflictError):
            await service.approve(task.id, parties["buyer_p"])

        seller_wallet = await _wallet(db_session, parties["seller"].id)
        assert seller_wallet.balance == Decimal("64.00")

    @pytest.mark.asyncio
    async def test_only_assigned_agent_submits(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        intruder = Principal(user_id=parties["buyer"].id, role="agent", agent_id=parties["buyer"].id)
        with pytest.raises(ForbiddenError):
            await TaskService(db_session).submit_result(task.id, intruder, "mine")

    @pytest.mark.asyncio
    async def test_cannot_approve_before_completion(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        with pytest.raises(ConflictError):
            await TaskService(db_session).approve(task.id, parties["buyer_p"])

    @pytest.mark.asyncio
    async def test_auto_approve_due_releases_overdue_tasks(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        service = TaskService(db_session)
        aggregate = await service.submit_result(task.id, parties["agent_p"], "done")
        await db_session.commit()

        not_yet = await service.auto_approve_due(now=aggregate.task.completed_at + timedelta(hours=23))
        assert not_yet == []

        approved = await service.auto_approve_due(now=aggregate.task.completed_at + timedelta(hours=25))
        assert approved == [task.id]
        seller_wallet = await _wallet(db_session, parties["seller"].id)
        assert seller_wallet.balance == Decimal("64.00")

    @pytest.mark.asyncio
    async def test_auto_approve_shortfall_leaves_task_for_admin(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        service = TaskService(db_session)
        aggregate = await service.submit_result(task.id, parties["agent_p"], "done")
        buyer_wallet = await _wallet(db_session, parties["buyer"].id)
        buyer_wallet.escrow_balance = Decimal("0.00")
        await db_session.commit()
        later = aggregate.task.completed_at + timedelta(hours=25)

        assert await service.auto_approve_due(now=later) == []
        await db_session.commit()

        await db_session.refresh(task)
        assert task.status == "completed"
        assert task.auto_approve_at is None
        seller_wallet = await _wallet(db_session, parties["seller"].id)
        assert seller_wallet.balance == Decimal("0.00")
        assert await service.task_repo.list_overdue_for_update(later, 10) == []


class TestDisputeAndCancel:
    @pytest.mark.asyncio
    async def test_open_dispute_holds_funds(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        service = TaskService(db_session)
        await service.submit_result(task.id, parties["agent_p"], "done")

        dispute = await service.open_dispute(task.id, parties["buyer_p"], "Output is wrong", ["diff.txt"])

        assert dispute.task_id == task.id
        assert task.status == "disputed"
        wallet = await _wallet(db_session, parties["buyer"].id)
        assert wallet.escrow_balance == Decimal("80.00")
        with pytest.raises(ConflictError):
            await service.open_dispute(task.id, parties["buyer_p"], "Again")

    @pytest.mark.asyncio
    async def test_dispute_requires_completed_task(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        with pytest.raises(ConflictError):
            await TaskService(db_session).open_dispute(task.id, parties["buyer_p"], "Too early")

    @pytest.mark.asyncio
    async def test_cancel_rejects_pending_bids(self, db_session, parties):
        task = await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        service = TaskService(db_session)
        outcome = await service.apply(task.id, parties["agent_p"], Decimal("10"))

        cancelled = await service.cancel(task.id, parties["buyer_p"])

        assert cancelled.status == "cancelled"
        status = (
            await db_session.execute(
                select(TaskApplication.status).where(TaskApplication.id == outcome.application.id)
            )
        ).scalar_one()
        assert status == "rejected"

    @pytest.mark.asyncio
    async def test_cannot_cancel_assigned_task(self, db_session, parties):
        task = await _assigned_task(db_session, parties)
        with pytest.raises(InvalidTransitionError):
            await TaskService(db_session).cancel(task.id, parties["buyer_p"])

    @pytest.mark.asyncio
    async def test_unknown_task(self, db_session, parties):
        with pytest.raises(NotFoundError):
            await TaskService(db_session).approve(uuid4(), parties["buyer_p"])


class TestAvailableTasks:
    @pytest.mark.asyncio
    async def test_affinity_ranking_spans_pages(self, db_session, parties):
        now = datetime.now(timezone.utc)
        matching = await TaskFactory.create(
            db_session, buyer_id=parties["buyer"].id, tags=["python"], created_at=now - timedelta(hours=3)
        )
        others = [
            await TaskFactory.create(
                db_session, buyer_id=parties["buyer"].id, tags=["design"], created_at=now - timedelta(hours=h)
            )
            for h in (2, 1, 0)
        ]
        await db_session.commit()
        service = TaskService(db_session)

        first, total = await service.list_available(parties["agent_p"], offset=0, limit=2)
        second, _ = await service.list_available(parties["agent_p"], offset=2, limit=2)

        assert total == 4
        assert [(t.id, score) for t, score in first] == [(matching.id, 100), (others[2].id, 0)]
        assert [t.id for t, _ in second] == [others[1].id, others[0].id]


class TestPlatformStats:
    @pytest.mark.asyncio
    async def test_counts_delivered_work_as_completed(self, db_session, parties):
        await TaskFactory.create(db_session, buyer_id=parties["buyer"].id)
        await TaskFactory.create(db_session, buyer_id=parties["buyer"].id, status="cancelled")
        delivered = await _assigned_task(db_session, parties)
        service = TaskService(db_session)
        await service.submit_result(delivered.id, parties["agent_p"], "done")
        approved = await _assigned_task(db_session, parties, bid="20.00")
        await service.submit_result(approved.id, parties["agent_p"], "done")
        await service.approve(approved.id, parties["buyer_p"])

        stats = await service.get_stats()

        assert stats.total_tasks == 4
        assert stats.open_tasks == 1
        assert stats.completed_tasks == 2
        assert stats.total_agents == 1
