"""Pydantic schemas for agents and reviews."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from marketplace.shared.schemas.base import BaseSchema, PaginatedResponse


def normalize_tags(tags: list[str]) -> list[str]:
    cleaned = {t.strip().lower() for t in tags if t and t.strip()}
    if any(len(t) > 50 for t in cleaned):
        raise ValueError("tags must be at most 50 characters")
    return sorted(cleaned)


# ===========================================
# AGENT SCHEMAS
# ===========================================


class RegisterAgentRequest(BaseModel):
    """Request to register a seller agent."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=5000)
    tags: list[str] = Field(default_factory=list, max_length=20)
    base_price: Decimal = Field(..., gt=0, decimal_places=2)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)


class UpdateAgentRequest(BaseModel):
    """Partial update; only the fields sent are changed."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=5000)
    tags: list[str] | None = Field(default=None, max_length=20)
    base_price: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    status: str | None = Field(default=None, max_length=20)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else normalize_tags(v)


class RegenerateKeyRequest(BaseModel):
    """Sellers name the agent; an agent key rotates itself."""

    agent_id: UUID | None = None


class AgentSummary(BaseSchema):
    id: UUID
    seller_id: UUID
    name: str
    rating: Decimal
    total_tasks_completed: int


class AgentResponse(BaseSchema):
    id: UUID
    seller_id: UUID
    name: str
    description: str | None = None
    tags: list[str]
    base_price: Decimal
    rating: Decimal
    total_tasks_completed: int
    status: str
    last_seen_at: datetime | None = None
    created_at: datetime


class AgentRegisteredResponse(BaseSchema):
    """Registration result; ``api_key`` is shown only here."""

    agent: AgentResponse
    api_key: str
    message: str = "Agent registered. Store the API key securely; it won't be shown again."


class AgentListResponse(PaginatedResponse[AgentResponse]):
    """Page of agents, best rated first."""


class SellerAgentsResponse(BaseSchema):
    """Every agent of the calling seller, newest first."""

    items: list[AgentResponse]
    total: int


class ApiKeyResponse(BaseSchema):
    agent_id: UUID
    api_key: str
    message: str = "API key regenerated. Store it securely; it won't be shown again."


class HeartbeatResponse(BaseSchema):
    agent_id: UUID
    name: str
    status: str
    last_seen_at: datetime


# ===========================================
# AGENT SELF-SERVICE SCHEMAS
# ===========================================


class AgentWallet(BaseSchema):
    balance: Decimal
    escrow_balance: Decimal


class ActiveAssignment(BaseSchema):
    id: UUID
    task_id: UUID
    task_title: str
    task_status: str
    agreed_price: Decimal
    status: str


class AgentProfileResponse(BaseSchema):
    """The calling agent with its seller's wallet and open work."""

    agent: AgentResponse
    wallet: AgentWallet
    active_assignments: list[ActiveAssignment]


class TaskBrief(BaseSchema):
    id: UUID
    title: str
    description: str
    status: str
    max_budget: Decimal
    tags: list[str]
    urgency: str
    created_at: datetime


class AgentApplicationResponse(BaseSchema):
    id: UUID
    task_id: UUID
    bid_amount: Decimal
    message: str | None = None
    status: str
    created_at: datetime
    task: TaskBrief


class AgentApplicationListResponse(BaseSchema):
    items: list[AgentApplicationResponse]
    total: int


# ===========================================
# REVIEW SCHEMAS
# ===========================================


class CreateReviewRequest(BaseModel):
    task_id: UUID
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(default=None, max_length=5000)


class ReviewResponse(BaseSchema):
    id: UUID
    task_id: UUID
    reviewer_id: UUID
    reviewee_id: UUID
    rating: int
    comment: str | None = None
    created_at: datetime
