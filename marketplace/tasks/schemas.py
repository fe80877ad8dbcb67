"""Pydantic schemas for task request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from marketplace.agents.schemas import AgentSummary, normalize_tags
from marketplace.shared.schemas.base import BaseSchema, PaginatedResponse, TaskUrgency


# ===========================================
# REQUESTS
# ===========================================


class CreateTaskRequest(BaseModel):
    """Request to post a task."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=20000)
    tags: list[str] = Field(default_factory=list, max_length=20)
    max_budget: Decimal = Field(..., gt=0, decimal_places=2)
    urgency: str = Field(default=TaskUrgency.NORMAL.value)
    auto_assign: bool = False

    @field_validator("urgency")
    @classmethod
    def validate_urgency(cls, v: str) -> str:
        if v not in {u.value for u in TaskUrgency}:
            raise ValueError("urgency must be normal or urgent")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)


class ApplyRequest(BaseModel):
    bid: Decimal = Field(..., gt=0, decimal_places=2)
    message: str | None = Field(default=None, max_length=5000)


class SelectApplicationRequest(BaseModel):
    application_id: UUID


class AssignAgentRequest(BaseModel):
    agent_id: UUID


class SubmitResultRequest(BaseModel):
    result_text: str = Field(..., min_length=1, max_length=100000)
    result_files: list[str] = Field(default_factory=list, max_length=50)


class OpenDisputeRequest(BaseModel):
    comment: str = Field(..., min_length=1, max_length=10000)
    evidence: list[str] = Field(default_factory=list, max_length=50)


# ===========================================
# RESPONSES
# ===========================================


class TaskResponse(BaseSchema):
    id: UUID
    buyer_id: UUID
    title: str
    description: str
    tags: list[str]
    max_budget: Decimal
    urgency: str
    status: str
    auto_assign: bool
    created_at: datetime
    assigned_at: datetime | None = None
    completed_at: datetime | None = None
    approved_at: datetime | None = None
    auto_approve_at: datetime | None = None


class AvailableTaskResponse(TaskResponse):
    match_score: int = 0


class TaskListResponse(PaginatedResponse[TaskResponse]):
    """Page of tasks, newest first."""


class AvailableTaskListResponse(PaginatedResponse[AvailableTaskResponse]):
    """Page of open tasks ranked by tag affinity."""


class SuggestionResponse(BaseSchema):
    agent: AgentSummary
    match_score: Decimal
    price_estimate: Decimal


class CreateTaskResponse(BaseSchema):
    task: TaskResponse
    suggestions: list[SuggestionResponse]


class AssignmentResponse(BaseSchema):
    id: UUID
    task_id: UUID
    agent_id: UUID
    agreed_price: Decimal
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class ResultResponse(BaseSchema):
    result_text: str
    result_files: list[str]
    submitted_at: datetime


class TaskDetailResponse(BaseSchema):
    task: TaskResponse
    assignment: AssignmentResponse | None = None
    agent: AgentSummary | None = None
    result: ResultResponse | None = None
    dispute_id: UUID | None = None


class ApplicationResponse(BaseSchema):
    id: UUID
    task_id: UUID
    agent_id: UUID
    bid_amount: Decimal
    message: str | None = None
    status: str
    created_at: datetime
    agent: AgentSummary | None = None


class ApplyResponse(BaseSchema):
    application: ApplicationResponse
    auto_assigned: bool
    assignment: AssignmentResponse | None = None
    message: str


class AssignmentOutcomeResponse(BaseSchema):
    task: TaskResponse
    assignment: AssignmentResponse
    agent: AgentSummary
    message: str = "Agent assigned. Funds locked in escrow."


class ApprovalResponse(BaseSchema):
    task: TaskResponse
    escrow_released: Decimal
    platform_fee: Decimal
    seller_received: Decimal


class DisputeOpenedResponse(BaseSchema):
    dispute_id: UUID
    task_id: UUID
    status: str = "pending_seller_response"


class PlatformStatsResponse(BaseSchema):
    """Public platform counters."""

    total_tasks: int
    open_tasks: int
    completed_tasks: int
    total_agents: int
