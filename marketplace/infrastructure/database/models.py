"""SQLAlchemy ORM models for the marketplace database."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JsonType,
        list[str]: JsonType,
        UUID: Uuid,
        Decimal: Money,
        datetime: DateTime(timezone=True),
    }


# ===========================================
# ACCOUNTS
# ===========================================


class User(Base):
    """Marketplace account. Buyers, sellers and admins share this table."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="human")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('human', 'agent', 'admin')", name="valid_user_role"),
    )


# ===========================================
# LEDGER TABLES
# ===========================================


class Wallet(Base):
    """Spendable and escrowed funds of one user."""

    __tablename__ = "wallets"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))
    escrow_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=_utc_now, onupdate=_utc_now, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="wallet_balance_non_negative"),
        CheckConstraint("escrow_balance >= 0", name="wallet_escrow_non_negative"),
    )


class Transaction(Base):
    """Append-only ledger entry. Rows are never updated or deleted."""

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    wallet_id: Mapped[UUID] = mapped_column(
        ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(20))
    reference_id: Mapped[UUID | None] = mapped_column()
    description: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "type IN ('top_up', 'escrow_lock', 'escrow_release', 'refund', "
            "'withdrawal', 'platform_fee')",
            name="valid_transaction_type",
        ),
        CheckConstraint("amount > 0", name="transaction_amount_positive"),
        UniqueConstraint("wallet_id", "idempotency_key", name="uq_transaction_idempotency"),
        Index("idx_transactions_wallet_created", "wallet_id", "created_at"),
        Index("idx_transactions_reference", "reference_type", "reference_id"),
    )


# ===========================================
# AGENT TABLES
# ===========================================


class Agent(Base):
    """A seller's priced, tagged service profile."""

    __tablename__ = "agents"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    seller_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    base_price: Mapped[Decimal] = mapped_column(nullable=False)
    rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), nullable=False, default=Decimal("0.00")
    )
    total_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    api_key_hash: Mapped[str | None] = mapped_column(String(64), unique=True)
    last_seen_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=_utc_now, onupdate=_utc_now, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'suspended')",
            name="valid_agent_status",
        ),
        CheckConstraint("base_price > 0", name="agent_base_price_positive"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="agent_rating_range"),
        Index("idx_agents_seller", "seller_id"),
        Index("idx_agents_status", "status"),
    )


class Review(Base):
    """Rating left by one party of an approved task."""

    __tablename__ = "reviews"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    reviewer_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reviewee_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="review_rating_range"),
        UniqueConstraint("task_id", "reviewer_id", name="uq_review_task_reviewer"),
        Index("idx_reviews_reviewee", "reviewee_id"),
    )


# ===========================================
# TASK TABLES
# ===========================================


class Task(Base):
    """A fixed-price unit of work posted by a buyer."""

    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    buyer_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    max_budget: Mapped[Decimal] = mapped_column(nullable=False)
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    auto_assign: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=_utc_now, onupdate=_utc_now, server_default=func.now()
    )
    assigned_at: Mapped[datetime | None] = mapped_column()
    completed_at: Mapped[datetime | None] = mapped_column()
    approved_at: Mapped[datetime | None] = mapped_column()
    auto_approve_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'matching', 'assigned', 'in_progress', 'completed', "
            "'approved', 'disputed', 'refunded', 'cancelled')",
            name="valid_task_status",
        ),
        CheckConstraint("urgency IN ('normal', 'urgent')", name="valid_task_urgency"),
        CheckConstraint("max_budget > 0", name="task_max_budget_positive"),
        Index("idx_tasks_buyer", "buyer_id"),
        Index("idx_tasks_status", "status"),
        Index("idx_tasks_auto_approve", "status", "auto_approve_at"),
    )


class TaskSuggestion(Base):
    """Agent ranked by the matching scorer when the task was created."""

    __tablename__ = "task_suggestions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    agent_id: Mapped[UUID] = mapped_column(
        ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    match_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    price_estimate: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (Index("idx_task_suggestions_task", "task_id"),)


class TaskApplication(Base):
    """An agent's bid on an open task."""

    __tablename__ = "task_applications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    agent_id: Mapped[UUID] = mapped_column(
        ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    bid_amount: Mapped[Decimal] = mapped_column(nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="valid_application_status",
        ),
        CheckConstraint("bid_amount > 0", name="application_bid_positive"),
        UniqueConstraint("task_id", "agent_id", name="uq_application_task_agent"),
    )


class TaskAssignment(Base):
    """Binds a task to exactly one agent at an agreed price."""

    __tablename__ = "task_assignments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    agent_id: Mapped[UUID] = mapped_column(
        ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    agreed_price: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="assigned")
    started_at: Mapped[datetime | None] = mapped_column()
    completed_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('assigned', 'in_progress', 'completed', 'approved', 'disputed')",
            name="valid_assignment_status",
        ),
        CheckConstraint("agreed_price > 0", name="assignment_price_positive"),
        Index("idx_task_assignments_agent", "agent_id"),
    )


class TaskResult(Base):
    """Work product submitted by the assigned agent."""

    __tablename__ = "task_results"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    result_text: Mapped[str] = mapped_column(Text, nullable=False)
    result_files: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    submitted_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())


class Dispute(Base):
    """Buyer challenge of a completed task, resolved once by an admin."""

    __tablename__ = "disputes"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    buyer_comment: Mapped[str] = mapped_column(Text, nullable=False)
    buyer_evidence: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    seller_comment: Mapped[str | None] = mapped_column(Text)
    seller_evidence: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    admin_comment: Mapped[str | None] = mapped_column(Text)
    resolution: Mapped[str | None] = mapped_column(String(20))
    refund_percentage: Mapped[int | None] = mapped_column(Integer)
    resolved_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    resolved_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=_utc_now, onupdate=_utc_now, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "resolution IS NULL OR resolution IN ('full_refund', 'partial_refund', 'release')",
            name="valid_dispute_resolution",
        ),
        CheckConstraint(
            "refund_percentage IS NULL OR (refund_percentage >= 0 AND refund_percentage <= 100)",
            name="dispute_refund_percentage_range",
        ),
        Index("idx_disputes_resolved", "resolved_at"),
    )


# ===========================================
# NOTIFICATIONS
# ===========================================


class Notification(Base):
    """In-app notification for a user."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(20))
    reference_id: Mapped[UUID | None] = mapped_column()
    read_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=_utc_now, server_default=func.now())

    __table_args__ = (Index("idx_notifications_user_created", "user_id", "created_at"),)
