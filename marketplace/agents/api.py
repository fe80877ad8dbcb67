"""API endpoints for agents, agent self-service and reviews."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.agents.schemas import (
    ActiveAssignment,
    AgentApplicationListResponse,
    AgentApplicationResponse,
    AgentListResponse,
    AgentProfileResponse,
    AgentRegisteredResponse,
    AgentResponse,
    AgentWallet,
    ApiKeyResponse,
    CreateReviewRequest,
    HeartbeatResponse,
    RegenerateKeyRequest,
    RegisterAgentRequest,
    ReviewResponse,
    SellerAgentsResponse,
    TaskBrief,
    UpdateAgentRequest,
)
from marketplace.agents.service import AgentProfile, AgentService
from marketplace.infrastructure.database.session import get_db
from marketplace.security.auth import Principal, get_current_principal, require_agent
from marketplace.shared.exceptions import MarketplaceError, raise_http_exception

router = APIRouter(prefix="/agents", tags=["agents"])
reviews_router = APIRouter(prefix="/reviews", tags=["reviews"])


def _profile_response(profile: AgentProfile) -> AgentProfileResponse:
    return AgentProfileResponse(
        agent=AgentResponse.model_validate(profile.agent),
        wallet=AgentWallet.model_validate(profile.wallet),
        active_assignments=[
            ActiveAssignment(
                id=assignment.id,
                task_id=task.id,
                task_title=task.title,
                task_status=task.status,
                agreed_price=assignment.agreed_price,
                status=assignment.status,
            )
            for assignment, task in profile.active_assignments
        ],
    )


# ===========================================
# AGENTS
# ===========================================


@router.post("", response_model=AgentRegisteredResponse, status_code=status.HTTP_201_CREATED)
async def register_agent(
    body: RegisterAgentRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AgentRegisteredResponse:
    """
    Register an agent for the calling seller.

    The API key is returned once; only its hash is stored.
    """
    try:
        service = AgentService(db)
        agent, api_key = await service.register_agent(
            seller=principal,
            name=body.name,
            base_price=body.base_price,
            description=body.description,
            tags=body.tags,
        )
        await db.commit()
        return AgentRegisteredResponse(agent=AgentResponse.model_validate(agent), api_key=api_key)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("", response_model=AgentListResponse)
async def list_agents(
    status_filter: str | None = Query(default=None, alias="status"),
    tag: str | None = Query(default=None, max_length=50),
    seller_id: UUID | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> AgentListResponse:
    """Browse agents, best rated first."""
    service = AgentService(db)
    agents, total = await service.list_agents(status_filter, tag, seller_id, offset, limit)
    return AgentListResponse.page(
        [AgentResponse.model_validate(a) for a in agents],
        total,
        limit,
        offset,
    )


# ===========================================
# AGENT SELF-SERVICE
# ===========================================
# Fixed paths are declared before /{agent_id} so they are not captured by it.


@router.get("/me", response_model=AgentProfileResponse)
async def get_my_agent(
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> AgentProfileResponse:
    """The calling agent with its seller's wallet and active assignments."""
    try:
        service = AgentService(db)
        profile = await service.get_profile(principal)
        await db.commit()
        return _profile_response(profile)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.patch("/me", response_model=AgentResponse)
async def update_my_agent(
    body: UpdateAgentRequest,
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    """Update the calling agent's own profile."""
    try:
        service = AgentService(db)
        agent = await service.update_agent(
            principal.agent_id, principal, body.model_dump(exclude_unset=True)
        )
        await db.commit()
        return AgentResponse.model_validate(agent)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("/me/applications", response_model=AgentApplicationListResponse)
async def list_my_applications(
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> AgentApplicationListResponse:
    """The calling agent's bids with their tasks, newest first."""
    try:
        service = AgentService(db)
        rows = await service.list_my_applications(principal)
        items = [
            AgentApplicationResponse(
                id=application.id,
                task_id=application.task_id,
                bid_amount=application.bid_amount,
                message=application.message,
                status=application.status,
                created_at=application.created_at,
                task=TaskBrief.model_validate(task),
            )
            for application, task in rows
        ]
        return AgentApplicationListResponse(items=items, total=len(items))
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("/my", response_model=SellerAgentsResponse)
async def list_my_agents(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> SellerAgentsResponse:
    """Every agent owned by the calling seller."""
    service = AgentService(db)
    agents = await service.list_seller_agents(principal)
    return SellerAgentsResponse(
        items=[AgentResponse.model_validate(a) for a in agents],
        total=len(agents),
    )


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    principal: Principal = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
) -> HeartbeatResponse:
    """Report the calling agent online; an inactive agent becomes active."""
    try:
        service = AgentService(db)
        agent = await service.heartbeat(principal)
        await db.commit()
        return HeartbeatResponse(
            agent_id=agent.id,
            name=agent.name,
            status=agent.status,
            last_seen_at=agent.last_seen_at,
        )
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/api-key/regenerate", response_model=ApiKeyResponse)
async def regenerate_api_key(
    body: RegenerateKeyRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ApiKeyResponse:
    """
    Issue a new API key and revoke the old one.

    An agent key rotates itself; a seller token must name ``agent_id``.
    """
    try:
        service = AgentService(db)
        agent, api_key = await service.regenerate_api_key(
            principal, body.agent_id if body is not None else None
        )
        await db.commit()
        return ApiKeyResponse(agent_id=agent.id, api_key=api_key)
    except MarketplaceError as e:
        raise_http_exception(e)


# ===========================================
# AGENT BY ID
# ===========================================


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    try:
        service = AgentService(db)
        return AgentResponse.model_validate(await service.get_agent(agent_id))
    except MarketplaceError as e:
        raise_http_exception(e)


@router.patch("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: UUID,
    body: UpdateAgentRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    """Update an agent owned by the caller."""
    try:
        service = AgentService(db)
        agent = await service.update_agent(agent_id, principal, body.model_dump(exclude_unset=True))
        await db.commit()
        return AgentResponse.model_validate(agent)
    except MarketplaceError as e:
        raise_http_exception(e)


# ===========================================
# REVIEWS
# ===========================================


@reviews_router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    body: CreateReviewRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ReviewResponse:
    """Review the other party of an approved task."""
    try:
        service = AgentService(db)
        review = await service.submit_review(body.task_id, principal, body.rating, body.comment)
        await db.commit()
        return ReviewResponse.model_validate(review)
    except MarketplaceError as e:
        raise_http_exception(e)
