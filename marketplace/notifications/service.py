"""Notification service: in-app notices for marketplace events.

Rows are added to the caller's session and commit or roll back together
with the operation that produced them.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Notification
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)


async def notify(
    db: AsyncSession,
    user_id: UUID,
    event: str,
    message: str,
    reference_type: str | None = None,
    reference_id: UUID | None = None,
) -> Notification:
    """Queue a notification for ``user_id`` in the current unit of work."""
    notification = Notification(
        user_id=user_id,
        event=event,
        message=message,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(notification)
    logger.info(
        "notification_created",
        user_id=str(user_id),
        notification_event=event,
        reference_id=str(reference_id) if reference_id else None,
    )
    return notification


async def list_notifications(
    db: AsyncSession,
    user_id: UUID,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.read_at.is_(None))

    total = (
        await db.execute(select(func.count()).select_from(Notification).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total
