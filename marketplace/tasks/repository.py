"""Repository layer for tasks, bids, assignments and results."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import String, cast, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import (
    Agent,
    Dispute,
    Task,
    TaskApplication,
    TaskAssignment,
    TaskResult,
    TaskSuggestion,
)
from marketplace.shared.exceptions import ConflictError
from marketplace.shared.schemas.base import ApplicationStatus, TaskStatus
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TaskAggregate:
    """A task with the rows hanging off it, loaded through explicit joins."""

    task: Task
    assignment: TaskAssignment | None = None
    agent: Agent | None = None
    result: TaskResult | None = None
    dispute: Dispute | None = None


def _tag_pattern(tag: str) -> str:
    escaped = tag.replace("\\", "\\\\").replace('"', '\\"')
    return f'%"{escaped}"%'


class TaskRepository:
    """Repository for task rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Task:
        task = Task(**kwargs)
        self.session.add(task)
        await self.session.flush()
        await self.session.refresh(task)
        return task

    async def get_by_id(self, task_id: UUID) -> Task | None:
        return await self.session.get(Task, task_id)

    async def get_for_update(self, task_id: UUID) -> Task | None:
        query = (
            select(Task)
            .where(Task.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_task_with_assignment_and_agent(
        self,
        task_id: UUID,
        for_update: bool = False,
    ) -> TaskAggregate | None:
        """Load a task with its assignment, agent, result and dispute.

        With ``for_update`` the task row is locked until commit; every
        status change of the task and its children happens under that lock.
        """
        query = (
            select(Task, TaskAssignment, Agent, TaskResult, Dispute)
            .outerjoin(TaskAssignment, TaskAssignment.task_id == Task.id)
            .outerjoin(Agent, Agent.id == TaskAssignment.agent_id)
            .outerjoin(TaskResult, TaskResult.task_id == Task.id)
            .outerjoin(Dispute, Dispute.task_id == Task.id)
            .where(Task.id == task_id)
        )
        if for_update:
            query = query.with_for_update(of=Task).execution_options(populate_existing=True)
        row = (await self.session.execute(query)).one_or_none()
        if row is None:
            return None
        task, assignment, agent, task_result, dispute = row
        return TaskAggregate(
            task=task,
            assignment=assignment,
            agent=agent,
            result=task_result,
            dispute=dispute,
        )

    async def list_tasks(
        self,
        status: str | None = None,
        tag: str | None = None,
        buyer_id: UUID | None = None,
        statuses: list[str] | None = None,
        offset: int = 0,
        limit: int | None = 50,
    ) -> tuple[list[Task], int]:
        conditions = []
        if status:
            conditions.append(Task.status == status)
        if statuses:
            conditions.append(Task.status.in_(statuses))
        if buyer_id:
            conditions.append(Task.buyer_id == buyer_id)
        if tag:
            conditions.append(cast(Task.tags, String).like(_tag_pattern(tag)))

        base_query = select(Task)
        if conditions:
            base_query = base_query.where(*conditions)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        base_query = base_query.order_by(Task.created_at.desc()).offset(offset)
        if limit is not None:
            base_query = base_query.limit(limit)
        result = await self.session.execute(base_query)
        return list(result.scalars().all()), total

    async def count_by_status(self) -> dict[str, int]:
        query = select(Task.status, func.count()).group_by(Task.status)
        result = await self.session.execute(query)
        return {status: count for status, count in result.all()}

    async def list_overdue_for_update(self, now: datetime, limit: int) -> list[Task]:
        """Completed tasks past their auto-approve deadline.

        Rows already locked by another sweeper or a concurrent request are
        skipped rather than waited on.
        """
        query = (
            select(Task)
            .where(
                Task.status == TaskStatus.COMPLETED.value,
                Task.auto_approve_at.is_not(None),
                Task.auto_approve_at <= now,
            )
            .order_by(Task.auto_approve_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())


class ApplicationRepository:
    """Repository for bids."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> TaskApplication:
        application = TaskApplication(**kwargs)
        self.session.add(application)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError("Agent has already applied to this task") from e
        await self.session.refresh(application)
        return application

    async def get_by_id(self, application_id: UUID) -> TaskApplication | None:
        return await self.session.get(TaskApplication, application_id)

    async def get_for_task_and_agent(self, task_id: UUID, agent_id: UUID) -> TaskApplication | None:
        query = select(TaskApplication).where(
            TaskApplication.task_id == task_id,
            TaskApplication.agent_id == agent_id,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_task(self, task_id: UUID) -> list[tuple[TaskApplication, Agent]]:
        query = (
            select(TaskApplication, Agent)
            .join(Agent, Agent.id == TaskApplication.agent_id)
            .where(TaskApplication.task_id == task_id)
            .order_by(TaskApplication.created_at)
        )
        result = await self.session.execute(query)
        return [(application, agent) for application, agent in result.all()]

    async def list_for_agent(self, agent_id: UUID) -> list[tuple[TaskApplication, Task]]:
        query = (
            select(TaskApplication, Task)
            .join(Task, Task.id == TaskApplication.task_id)
            .where(TaskApplication.agent_id == agent_id)
            .order_by(TaskApplication.created_at.desc(), TaskApplication.id)
        )
        result = await self.session.execute(query)
        return [(application, task) for application, task in result.all()]

    async def reject_pending(self, task_id: UUID, except_id: UUID | None = None) -> int:
        """Reject every pending bid on the task other than ``except_id``."""
        conditions = [
            TaskApplication.task_id == task_id,
            TaskApplication.status == ApplicationStatus.PENDING.value,
        ]
        if except_id is not None:
            conditions.append(TaskApplication.id != except_id)
        result = await self.session.execute(
            update(TaskApplication)
            .where(*conditions)
            .values(status=ApplicationStatus.REJECTED.value)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0


class AssignmentRepository:
    """Repository for task assignments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> TaskAssignment:
        """Insert the task's single assignment.

        The unique constraint on ``task_id`` is the final arbiter when two
        assignments race past the status check.
        """
        assignment = TaskAssignment(**kwargs)
        self.session.add(assignment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning("assignment_conflict", task_id=str(kwargs.get("task_id")))
            raise ConflictError("Task has already been assigned") from e
        await self.session.refresh(assignment)
        return assignment

    async def list_for_agent(
        self,
        agent_id: UUID,
        statuses: list[str],
    ) -> list[tuple[TaskAssignment, Task]]:
        query = (
            select(TaskAssignment, Task)
            .join(Task, Task.id == TaskAssignment.task_id)
            .where(TaskAssignment.agent_id == agent_id, TaskAssignment.status.in_(statuses))
            .order_by(TaskAssignment.created_at.desc())
        )
        result = await self.session.execute(query)
        return [(assignment, task) for assignment, task in result.all()]


class ResultRepository:
    """Repository for submitted results."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> TaskResult:
        task_result = TaskResult(**kwargs)
        self.session.add(task_result)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError("A result has already been submitted for this task") from e
        await self.session.refresh(task_result)
        return task_result


class SuggestionRepository:
    """Repository for stored match suggestions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_many(self, task_id: UUID, matches) -> list[TaskSuggestion]:
        suggestions = [
            TaskSuggestion(
                task_id=task_id,
                agent_id=match.agent_id,
                match_score=match.match_score,
                price_estimate=match.price_estimate,
            )
            for match in matches
        ]
        self.session.add_all(suggestions)
        await self.session.flush()
        return suggestions

    async def list_for_task(self, task_id: UUID) -> list[tuple[TaskSuggestion, Agent]]:
        query = (
            select(TaskSuggestion, Agent)
            .join(Agent, Agent.id == TaskSuggestion.agent_id)
            .where(TaskSuggestion.task_id == task_id)
            .order_by(TaskSuggestion.match_score.desc())
        )
        result = await self.session.execute(query)
        return [(suggestion, agent) for suggestion, agent in result.all()]
