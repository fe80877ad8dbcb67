"""Pydantic schemas for wallet request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from marketplace.ledger.config import get_ledger_settings
from marketplace.shared.schemas.base import BaseSchema, PaginatedResponse


# ===========================================
# REQUESTS
# ===========================================


class TopUpRequest(BaseModel):
    """Credit the caller's wallet from the mocked payment rail."""

    amount: Decimal = Field(..., gt=0, decimal_places=2)

    @field_validator("amount")
    @classmethod
    def validate_ceiling(cls, v: Decimal) -> Decimal:
        ceiling = get_ledger_settings().max_top_up_amount
        if v > ceiling:
            raise ValueError(f"amount must not exceed {ceiling}")
        return v


class WithdrawRequest(BaseModel):
    """Debit the caller's spendable balance to the mocked payout rail."""

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: str | None = Field(default=None, min_length=1, max_length=50)


# ===========================================
# RESPONSES
# ===========================================


class WalletResponse(BaseSchema):
    id: UUID
    user_id: UUID
    balance: Decimal
    escrow_balance: Decimal
    updated_at: datetime | None = None


class TransactionResponse(BaseSchema):
    id: UUID
    wallet_id: UUID
    type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_type: str | None = None
    reference_id: UUID | None = None
    description: str | None = None
    created_at: datetime


class TransactionListResponse(PaginatedResponse[TransactionResponse]):
    """Page of ledger rows, newest first."""


class TransactionReceipt(BaseSchema):
    """Result of a top-up or withdrawal."""

    transaction_id: UUID
    type: str
    amount: Decimal
    balance_after: Decimal


class EarningsSummary(BaseSchema):
    total_earned: Decimal
    pending_escrow: Decimal
    available: Decimal


class EarningsResponse(BaseSchema):
    """Seller earnings: release credits and withdrawals, newest first."""

    earnings: EarningsSummary
    transactions: list[TransactionResponse]
