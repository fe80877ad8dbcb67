"""API endpoints for tasks."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.agents.schemas import AgentSummary
from marketplace.infrastructure.database.session import get_db
from marketplace.security.auth import Principal, get_current_principal, require_agent
from marketplace.shared.exceptions import MarketplaceError, raise_http_exception
from marketplace.shared.utils.logging import get_logger
from marketplace.tasks.repository import TaskAggregate
from marketplace.tasks.schemas import (
    ApplicationResponse,
    ApplyRequest,
    ApplyResponse,
    ApprovalResponse,
    AssignAgentRequest,
    AssignmentOutcomeResponse,
    AssignmentResponse,
    AvailableTaskListResponse,
    AvailableTaskResponse,
    CreateTaskRequest,
    CreateTaskResponse,
    DisputeOpenedResponse,
    OpenDisputeRequest,
    PlatformStatsResponse,
    ResultResponse,
    SelectApplicationRequest,
    SubmitResultRequest,
    SuggestionResponse,
    TaskDetailResponse,
    TaskListResponse,
    TaskResponse,
)
from marketplace.tasks.service import AssignmentOutcome, TaskService

logger = get_logger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])
stats_router = APIRouter(prefix="/stats", tags=["health"])


def _detail(aggregate: TaskAggregate) -> TaskDetailResponse:
    return TaskDetailResponse(
        task=TaskResponse.model_validate(aggregate.task),
        assignment=(
            AssignmentResponse.model_validate(aggregate.assignment) if aggregate.assignment else None
        ),
        agent=AgentSummary.model_validate(aggregate.agent) if aggregate.agent else None,
        result=ResultResponse.model_validate(aggregate.result) if aggregate.result else None,
        dispute_id=aggregate.dispute.id if aggregate.dispute else None,
    )


def _assignment_outcome(outcome: AssignmentOutcome) -> AssignmentOutcomeResponse:
    return AssignmentOutcomeResponse(
        task=TaskResponse.model_validate(outcome.task),
        assignment=AssignmentResponse.model_validate(outcome.assignment),
        agent=AgentSummary.model_validate(outcome.agent),
    )


# ===========================================
# CREATION AND LISTINGS
# ===========================================


@router.post("", response_model=CreateTaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    body: CreateTaskRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> CreateTaskResponse:
    """Post a task and get the top agent suggestions for it."""
    try:
        service = TaskService(db)
        task, _ = await service.create_task(
            buyer=principal,
            title=body.title,
            description=body.description,
            max_budget=body.max_budget,
            tags=body.tags,
            urgency=body.urgency,
            auto_assign=body.auto_assign,
        )
        stored = await service.get_stored_suggestions(task.id)
        await db.commit()
        return CreateTaskResponse(
            task=TaskResponse.model_validate(task),
            suggestions=[
                SuggestionResponse(
                    agent=AgentSummary.model_validate(agent),
                    match_score=suggestion.match_score,
                    price_estimate=suggestion.price_estimate,
                )
                for suggestion, agent in stored
            ],
        )
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    status_filter: str | None = Query(default=None, alias="status"),
    tag: str | None = Query(default=None, max_length=50),
    mine: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TaskListResponse:
    """List tasks with optional status/tag filters."""
    service = TaskService(db)
    tasks, total = await service.list_tasks(
        status=status_filter,
        tag=tag,
        buyer_id=principal.user_id if mine else None,
        offset=offset,
        limit=limit,
    )
    return TaskListResponse.page(
        [TaskResponse.model_validate(t) for t in tasks],
        total,
        limit,
        offset,
    )


@router.get("/available", response_model=AvailableTaskListResponse)
async def list_available_tasks(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AvailableTaskListResponse:
    """Tasks still accepting bids, ordered by the caller's tag affinity."""
    service = TaskService(db)
    scored, total = await service.list_available(principal, offset=offset, limit=limit)
    items = []
    for task, match_score in scored:
        item = AvailableTaskResponse.model_validate(task)
        item.match_score = match_score
        items.append(item)
    return AvailableTaskListResponse.page(
        items,
        total,
        limit,
        offset,
    )


@router.get("/{task_id}", response_model=TaskDetailResponse)
async def get_task(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TaskDetailResponse:
    """Task with its assignment, agent and result."""
    try:
        service = TaskService(db)
        return _detail(await service.get_task_with_assignment_and_agent(task_id))
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("/{task_id}/suggestions", response_model=list[SuggestionResponse])
async def get_suggestions(
    task_id: UUID,
    limit: int = Query(default=3, ge=1, le=20),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[SuggestionResponse]:
    """Rank the currently active agents for a task."""
    try:
        service = TaskService(db)
        ranked = await service.get_live_suggestions(task_id, limit)
        return [
            SuggestionResponse(
                agent=AgentSummary.model_validate(agent),
                match_score=match.match_score,
                price_estimate=match.price_estimate,
            )
            for match, agent in ranked
        ]
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("/{task_id}/applications", response_model=list[ApplicationResponse])
async def list_applications(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[ApplicationResponse]:
    """Bids on a task, visible to its buyer."""
    try:
        service = TaskService(db)
        rows = await service.list_applications(task_id, principal)
        responses = []
        for application, agent in rows:
            response = ApplicationResponse.model_validate(application)
            response.agent = AgentSummary.model_validate(agent)
            responses.append(response)
        return responses
    except MarketplaceError as e:
        raise_http_exception(e)


# ===========================================
# BIDDING AND ASSIGNMENT
# ===========================================


@router.post("/{task_id}/apply", response_model=ApplyResponse, status_code=status.HTTP_201_CREATED)
async def apply_to_task(
    task_id: UUID,
    body: ApplyRequest,
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> ApplyResponse:
    """Bid on a task. Auto-assign tasks accept the bid immediately."""
    try:
        service = TaskService(db)
        outcome = await service.apply(task_id, principal, body.bid, body.message)
        await db.commit()
        if outcome.auto_assigned:
            message = "Application submitted and auto-assigned. Funds locked in escrow."
        elif outcome.auto_assign_error:
            message = "Application submitted. Auto-assign is pending until the buyer adds funds."
        else:
            message = "Application submitted successfully. Waiting for buyer approval."
        return ApplyResponse(
            application=ApplicationResponse.model_validate(outcome.application),
            auto_assigned=outcome.auto_assigned,
            assignment=(
                AssignmentResponse.model_validate(outcome.assignment) if outcome.assignment else None
            ),
            message=message,
        )
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{task_id}/select", response_model=AssignmentOutcomeResponse)
async def select_application(
    task_id: UUID,
    body: SelectApplicationRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AssignmentOutcomeResponse:
    """Accept a bid; other bids are rejected and escrow is locked."""
    try:
        service = TaskService(db)
        outcome = await service.select_application(task_id, principal, body.application_id)
        await db.commit()
        return _assignment_outcome(outcome)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{task_id}/assign", response_model=AssignmentOutcomeResponse)
async def assign_agent(
    task_id: UUID,
    body: AssignAgentRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AssignmentOutcomeResponse:
    """Hire an agent directly at its base price."""
    try:
        service = TaskService(db)
        outcome = await service.assign_agent(task_id, principal, body.agent_id)
        await db.commit()
        return _assignment_outcome(outcome)
    except MarketplaceError as e:
        raise_http_exception(e)


# ===========================================
# DELIVERY AND OUTCOME
# ===========================================


@router.post("/{task_id}/start", response_model=TaskDetailResponse)
async def start_work(
    task_id: UUID,
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> TaskDetailResponse:
    """Assigned agent marks the task in progress."""
    try:
        service = TaskService(db)
        aggregate = await service.start_work(task_id, principal)
        await db.commit()
        return _detail(aggregate)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{task_id}/submit", response_model=TaskDetailResponse)
async def submit_result(
    task_id: UUID,
    body: SubmitResultRequest,
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> TaskDetailResponse:
    """Deliver the result; the auto-approve clock starts."""
    try:
        service = TaskService(db)
        aggregate = await service.submit_result(
            task_id, principal, body.result_text, body.result_files
        )
        await db.commit()
        return _detail(aggregate)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{task_id}/approve", response_model=ApprovalResponse)
async def approve_task(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ApprovalResponse:
    """Accept the result and release escrow to the seller."""
    try:
        service = TaskService(db)
        outcome = await service.approve(task_id, principal)
        await db.commit()
        return ApprovalResponse(
            task=TaskResponse.model_validate(outcome.task),
            escrow_released=outcome.release.gross,
            platform_fee=outcome.release.platform_fee,
            seller_received=outcome.release.seller_net,
        )
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post(
    "/{task_id}/dispute",
    response_model=DisputeOpenedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_dispute(
    task_id: UUID,
    body: OpenDisputeRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> DisputeOpenedResponse:
    """Challenge a completed result; funds stay in escrow."""
    try:
        service = TaskService(db)
        dispute = await service.open_dispute(task_id, principal, body.comment, body.evidence)
        await db.commit()
        return DisputeOpenedResponse(dispute_id=dispute.id, task_id=dispute.task_id)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TaskResponse:
    """Cancel a task that has not been assigned."""
    try:
        service = TaskService(db)
        task = await service.cancel(task_id, principal)
        await db.commit()
        return TaskResponse.model_validate(task)
    except MarketplaceError as e:
        raise_http_exception(e)


# ===========================================
# STATS
# ===========================================


@stats_router.get("", response_model=PlatformStatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)) -> PlatformStatsResponse:
    """Public task and agent counters."""
    stats = await TaskService(db).get_stats()
    return PlatformStatsResponse.model_validate(stats)
