"""Configuration for the escrow ledger."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class LedgerSettings(BaseSettings):
    """Ledger and payment-rail settings."""

    model_config = {"env_prefix": "LEDGER_", "case_sensitive": False}

    platform_fee_percentage: Decimal = Field(
        default=Decimal("20"),
        ge=0,
        le=100,
        description="Percentage of each released amount kept by the platform",
    )
    max_top_up_amount: Decimal = Field(
        default=Decimal("10000"),
        gt=0,
        description="Largest single top-up accepted",
    )
    default_withdrawal_method: str = Field(
        default="bank_transfer",
        description="Withdrawal method used when none is given",
    )


@lru_cache
def get_ledger_settings() -> LedgerSettings:
    """Get cached ledger settings."""
    return LedgerSettings()
