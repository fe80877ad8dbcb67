"""Initial schema: accounts, ledger, agents, tasks, disputes, notifications.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)


def _id() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    # --- Users ---
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'human'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.CheckConstraint("role IN ('human', 'agent', 'admin')", name="valid_user_role"),
    )

    # --- Wallets ---
    op.create_table(
        "wallets",
        _id(),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("balance", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("escrow_balance", MONEY, nullable=False, server_default=sa.text("0")),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("balance >= 0", name="wallet_balance_non_negative"),
        sa.CheckConstraint("escrow_balance >= 0", name="wallet_escrow_non_negative"),
    )

    # --- Transactions (append-only ledger) ---
    op.create_table(
        "transactions",
        _id(),
        sa.Column("wallet_id", UUID(as_uuid=True), sa.ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("balance_before", MONEY, nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("reference_type", sa.String(20)),
        sa.Column("reference_id", UUID(as_uuid=True)),
        sa.Column("description", sa.Text()),
        sa.Column("idempotency_key", sa.String(255)),
        _created_at(),
        sa.CheckConstraint(
            "type IN ('top_up', 'escrow_lock', 'escrow_release', 'refund', 'withdrawal', 'platform_fee')",
            name="valid_transaction_type",
        ),
        sa.CheckConstraint("amount > 0", name="transaction_amount_positive"),
        sa.UniqueConstraint("wallet_id", "idempotency_key", name="uq_transaction_idempotency"),
    )
    op.create_index("idx_transactions_wallet_created", "transactions", ["wallet_id", "created_at"])
    op.create_index("idx_transactions_reference", "transactions", ["reference_type", "reference_id"])

    # --- Agents ---
    op.create_table(
        "agents",
        _id(),
        sa.Column("seller_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("tags", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("base_price", MONEY, nullable=False),
        sa.Column("rating", sa.Numeric(3, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_tasks_completed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("api_key_hash", sa.String(64), unique=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="valid_agent_status"),
        sa.CheckConstraint("base_price > 0", name="agent_base_price_positive"),
        sa.CheckConstraint("rating >= 0 AND rating <= 5", name="agent_rating_range"),
    )
    op.create_index("idx_agents_seller", "agents", ["seller_id"])
    op.create_index("idx_agents_status", "agents", ["status"])

    # --- Tasks ---
    op.create_table(
        "tasks",
        _id(),
        sa.Column("buyer_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("tags", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("max_budget", MONEY, nullable=False),
        sa.Column("urgency", sa.String(20), nullable=False, server_default=sa.text("'normal'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'open'")),
        sa.Column("auto_assign", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        _updated_at(),
        sa.Column("assigned_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("auto_approve_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('open', 'matching', 'assigned', 'in_progress', 'completed', "
            "'approved', 'disputed', 'refunded', 'cancelled')",
            name="valid_task_status",
        ),
        sa.CheckConstraint("urgency IN ('normal', 'urgent')", name="valid_task_urgency"),
        sa.CheckConstraint("max_budget > 0", name="task_max_budget_positive"),
    )
    op.create_index("idx_tasks_buyer", "tasks", ["buyer_id"])
    op.create_index("idx_tasks_status", "tasks", ["status"])
    op.create_index("idx_tasks_auto_approve", "tasks", ["status", "auto_approve_at"])

    # --- Reviews ---
    op.create_table(
        "reviews",
        _id(),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reviewer_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reviewee_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text()),
        _created_at(),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="review_rating_range"),
        sa.UniqueConstraint("task_id", "reviewer_id", name="uq_review_task_reviewer"),
    )
    op.create_index("idx_reviews_reviewee", "reviews", ["reviewee_id"])

    # --- Task suggestions ---
    op.create_table(
        "task_suggestions",
        _id(),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("match_score", sa.Numeric(5, 2), nullable=False),
        sa.Column("price_estimate", MONEY, nullable=False),
        _created_at(),
    )
    op.create_index("idx_task_suggestions_task", "task_suggestions", ["task_id"])

    # --- Task applications ---
    op.create_table(
        "task_applications",
        _id(),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("bid_amount", MONEY, nullable=False),
        sa.Column("message", sa.Text()),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        _created_at(),
        sa.CheckConstraint("status IN ('pending', 'accepted', 'rejected')", name="valid_application_status"),
        sa.CheckConstraint("bid_amount > 0", name="application_bid_positive"),
        sa.UniqueConstraint("task_id", "agent_id", name="uq_application_task_agent"),
    )

    # --- Task assignments ---
    op.create_table(
        "task_assignments",
        _id(),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agreed_price", MONEY, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'assigned'")),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        _created_at(),
        sa.CheckConstraint(
            "status IN ('assigned', 'in_progress', 'completed', 'approved', 'disputed')",
            name="valid_assignment_status",
        ),
        sa.CheckConstraint("agreed_price > 0", name="assignment_price_positive"),
    )
    op.create_index("idx_task_assignments_agent", "task_assignments", ["agent_id"])

    # --- Task results ---
    op.create_table(
        "task_results",
        _id(),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("result_text", sa.Text(), nullable=False),
        sa.Column("result_files", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    # --- Disputes ---
    op.create_table(
        "disputes",
        _id(),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("buyer_comment", sa.Text(), nullable=False),
        sa.Column("buyer_evidence", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("seller_comment", sa.Text()),
        sa.Column("seller_evidence", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("admin_comment", sa.Text()),
        sa.Column("resolution", sa.String(20)),
        sa.Column("refund_percentage", sa.Integer()),
        sa.Column("resolved_by", UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "resolution IS NULL OR resolution IN ('full_refund', 'partial_refund', 'release')",
            name="valid_dispute_resolution",
        ),
        sa.CheckConstraint(
            "refund_percentage IS NULL OR (refund_percentage >= 0 AND refund_percentage <= 100)",
            name="dispute_refund_percentage_range",
        ),
    )
    op.create_index("idx_disputes_resolved", "disputes", ["resolved_at"])

    # --- Notifications ---
    op.create_table(
        "notifications",
        _id(),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event", sa.String(50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("reference_type", sa.String(20)),
        sa.Column("reference_id", UUID(as_uuid=True)),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index("idx_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("disputes")
    op.drop_table("task_results")
    op.drop_table("task_assignments")
    op.drop_table("task_applications")
    op.drop_table("task_suggestions")
    op.drop_table("reviews")
    op.drop_table("tasks")
    op.drop_table("agents")
    op.drop_table("transactions")
    op.drop_table("wallets")
    op.drop_table("users")
