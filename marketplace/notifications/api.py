"""API endpoints for notifications."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.session import get_db
from marketplace.notifications.schemas import NotificationListResponse, NotificationResponse
from marketplace.notifications.service import list_notifications
from marketplace.security.auth import Principal, get_current_principal

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    unread_only: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> NotificationListResponse:
    """List the caller's notifications, newest first."""
    items, total = await list_notifications(db, principal.user_id, unread_only, limit, offset)
    return NotificationListResponse.page(
        [NotificationResponse.model_validate(n) for n in items],
        total,
        limit,
        offset,
    )
