"""Pydantic schemas for notifications."""

from datetime import datetime
from uuid import UUID

from marketplace.shared.schemas.base import BaseSchema, PaginatedResponse


class NotificationResponse(BaseSchema):
    id: UUID
    event: str
    message: str
    reference_type: str | None = None
    reference_id: UUID | None = None
    read_at: datetime | None = None
    created_at: datetime


class NotificationListResponse(PaginatedResponse[NotificationResponse]):
    """Page of the caller's notifications."""
