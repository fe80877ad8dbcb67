"""API endpoints for disputes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.agents.schemas import AgentSummary
from marketplace.disputes.schemas import (
    DisputeDetailResponse,
    DisputeListResponse,
    DisputeResponse,
    RefundBreakdown,
    ResolutionResponse,
    RespondDisputeRequest,
    ResolveDisputeRequest,
)
from marketplace.disputes.service import DisputeService, DisputeView, dispute_status
from marketplace.infrastructure.database.models import Dispute
from marketplace.infrastructure.database.session import get_db
from marketplace.security.auth import Principal, get_current_principal, require_admin
from marketplace.shared.exceptions import MarketplaceError, raise_http_exception

router = APIRouter(prefix="/disputes", tags=["disputes"])

_DISPUTE_FIELDS = (
    "id",
    "task_id",
    "buyer_comment",
    "buyer_evidence",
    "seller_comment",
    "seller_evidence",
    "admin_comment",
    "resolution",
    "refund_percentage",
    "created_at",
    "resolved_at",
)


def _dispute_fields(dispute: Dispute) -> dict:
    fields = {name: getattr(dispute, name) for name in _DISPUTE_FIELDS}
    fields["status"] = dispute_status(dispute)
    return fields


def _dispute_response(dispute: Dispute) -> DisputeResponse:
    return DisputeResponse(**_dispute_fields(dispute))


def _detail_response(view: DisputeView) -> DisputeDetailResponse:
    agent = view.aggregate.agent
    return DisputeDetailResponse(
        **_dispute_fields(view.dispute),
        task_title=view.aggregate.task.title,
        buyer_id=view.aggregate.task.buyer_id,
        agent=AgentSummary.model_validate(agent) if agent else None,
    )


@router.get("", response_model=DisputeListResponse)
async def list_disputes(
    unresolved_only: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeListResponse:
    """Admin queue of disputes, newest first."""
    try:
        service = DisputeService(db)
        items, total = await service.list_disputes(principal, unresolved_only, offset, limit)
        return DisputeListResponse.page(
            [_dispute_response(d) for d in items],
            total,
            limit,
            offset,
        )
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("/{dispute_id}", response_model=DisputeDetailResponse)
async def get_dispute(
    dispute_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> DisputeDetailResponse:
    try:
        service = DisputeService(db)
        return _detail_response(await service.get_dispute(dispute_id, principal))
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{dispute_id}/respond", response_model=DisputeResponse)
async def respond_to_dispute(
    dispute_id: UUID,
    body: RespondDisputeRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    """Seller's side of the story."""
    try:
        service = DisputeService(db)
        dispute = await service.respond(dispute_id, principal, body.comment, body.evidence)
        await db.commit()
        return _dispute_response(dispute)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/{dispute_id}/resolve", response_model=ResolutionResponse)
async def resolve_dispute(
    dispute_id: UUID,
    body: ResolveDisputeRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    """Rule on a dispute and settle the escrowed funds."""
    try:
        service = DisputeService(db)
        outcome = await service.resolve(
            dispute_id,
            principal,
            body.resolution.value,
            body.refund_percentage,
            body.admin_comment,
        )
        await db.commit()
        return ResolutionResponse(
            dispute=_dispute_response(outcome.dispute),
            refund=RefundBreakdown(
                buyer_refund=outcome.split.buyer_refund,
                seller_received=outcome.split.seller_net,
                platform_fee=outcome.split.platform_fee,
            ),
        )
    except MarketplaceError as e:
        raise_http_exception(e)
