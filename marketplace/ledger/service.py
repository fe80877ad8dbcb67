"""Service layer for wallet operations exposed to users."""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Transaction, Wallet
from marketplace.ledger.config import get_ledger_settings
from marketplace.ledger.escrow import EscrowEngine
from marketplace.ledger.repository import LedgerRepository
from marketplace.shared.exceptions import ValidationError
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_ledger_settings()

EARNINGS_HISTORY_LIMIT = 50


@dataclass
class Earnings:
    """A seller's payout summary."""

    total_earned: Decimal
    pending_escrow: Decimal
    available: Decimal
    transactions: list[Transaction] = field(default_factory=list)


class WalletService:
    """Wallet reads plus the mocked top-up and withdrawal rails."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = LedgerRepository(session)
        self.escrow = EscrowEngine(session)

    async def get_wallet(self, user_id: UUID) -> Wallet:
        return await self.ledger.get_wallet(user_id)

    async def list_transactions(
        self,
        user_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        wallet = await self.ledger.get_wallet(user_id)
        return await self.ledger.list_transactions(wallet.id, limit=limit, offset=offset)

    async def get_earnings(self, user_id: UUID) -> Earnings:
        """Release credits received so far plus the current wallet position."""
        wallet = await self.ledger.get_wallet(user_id)
        return Earnings(
            total_earned=await self.ledger.total_earned(wallet.id),
            pending_escrow=wallet.escrow_balance,
            available=wallet.balance,
            transactions=await self.ledger.list_earnings(wallet.id, EARNINGS_HISTORY_LIMIT),
        )

    async def top_up(
        self,
        user_id: UUID,
        amount: Decimal,
        idempotency_key: str | None = None,
    ) -> Transaction:
        if amount > settings.max_top_up_amount:
            raise ValidationError(f"Top-up amount must not exceed {settings.max_top_up_amount}")
        wallet = await self.ledger.get_wallet_for_update(user_id)
        return await self.escrow.top_up(wallet, amount, idempotency_key)

    async def withdraw(
        self,
        user_id: UUID,
        amount: Decimal,
        method: str | None = None,
        idempotency_key: str | None = None,
    ) -> Transaction:
        wallet = await self.ledger.get_wallet_for_update(user_id)
        return await self.escrow.withdraw(
            wallet,
            amount,
            method or settings.default_withdrawal_method,
            idempotency_key,
        )
