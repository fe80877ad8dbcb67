"""Pydantic schemas for disputes."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from marketplace.agents.schemas import AgentSummary
from marketplace.shared.schemas.base import BaseSchema, DisputeResolution, PaginatedResponse


class RespondDisputeRequest(BaseModel):
    comment: str = Field(..., min_length=1, max_length=10000)
    evidence: list[str] = Field(default_factory=list, max_length=50)


class ResolveDisputeRequest(BaseModel):
    """Admin ruling; ``refund_percentage`` is required for partial refunds."""

    resolution: DisputeResolution
    refund_percentage: int | None = Field(default=None, ge=0, le=100)
    admin_comment: str | None = Field(default=None, max_length=10000)

    @model_validator(mode="after")
    def validate_partial(self) -> "ResolveDisputeRequest":
        if self.resolution == DisputeResolution.PARTIAL_REFUND and self.refund_percentage is None:
            raise ValueError("refund_percentage is required for partial refunds")
        return self


class DisputeResponse(BaseSchema):
    id: UUID
    task_id: UUID
    buyer_comment: str
    buyer_evidence: list[str]
    seller_comment: str | None = None
    seller_evidence: list[str]
    admin_comment: str | None = None
    resolution: str | None = None
    refund_percentage: int | None = None
    status: str
    created_at: datetime
    resolved_at: datetime | None = None


class DisputeDetailResponse(DisputeResponse):
    task_title: str
    buyer_id: UUID
    agent: AgentSummary | None = None


class DisputeListResponse(PaginatedResponse[DisputeResponse]):
    """Page of disputes, newest first."""


class RefundBreakdown(BaseSchema):
    buyer_refund: Decimal
    seller_received: Decimal
    platform_fee: Decimal


class ResolutionResponse(BaseSchema):
    dispute: DisputeResponse
    refund: RefundBreakdown
