"""Base schemas and common types used across the marketplace."""

from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict


# ===========================================
# ENUMS
# ===========================================


class UserRole(str, Enum):
    """Account role of an authenticated principal."""

    HUMAN = "human"
    AGENT = "agent"
    ADMIN = "admin"


class TransactionType(str, Enum):
    """Kinds of ledger transaction rows."""

    TOP_UP = "top_up"
    ESCROW_LOCK = "escrow_lock"
    ESCROW_RELEASE = "escrow_release"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"
    PLATFORM_FEE = "platform_fee"


class AgentStatus(str, Enum):
    """Status of a seller agent profile."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    OPEN = "open"
    MATCHING = "matching"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class TaskUrgency(str, Enum):
    """Urgency of a task."""

    NORMAL = "normal"
    URGENT = "urgent"


class AssignmentStatus(str, Enum):
    """Status of a task assignment, mirroring a subset of task status."""

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    DISPUTED = "disputed"


class ApplicationStatus(str, Enum):
    """Status of a bid on a task."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DisputeResolution(str, Enum):
    """Outcome chosen by an admin for a dispute."""

    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    RELEASE = "release"


# ===========================================
# BASE SCHEMAS
# ===========================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


# ===========================================
# PAGINATION
# ===========================================

T = TypeVar("T")


class PaginatedResponse(BaseSchema, Generic[T]):
    """Generic paginated response wrapper."""

    items: list[T]
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def page(cls, items: list, total: int, limit: int, offset: int):
        """Build a page, deriving ``has_more`` from the window."""
        return cls(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
        )


# ===========================================
# HEALTH
# ===========================================


class HealthResponse(BaseSchema):
    """Liveness probe response."""

    status: str = "healthy"
    service: str = "marketplace"
    timestamp: datetime
