"""Escrow engine: the money-moving operations of the marketplace.

Each operation works on wallets the caller has already locked and runs
inside the caller's transaction. Preconditions are checked before the first
write, so a rejected operation leaves no partial state in the session.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Transaction, Wallet
from marketplace.ledger.config import get_ledger_settings
from marketplace.ledger.fees import (
    ZERO,
    ReleaseBreakdown,
    SplitBreakdown,
    compute_release,
    compute_split,
    to_money,
)
from marketplace.ledger.repository import LedgerRepository
from marketplace.shared.exceptions import (
    ConflictError,
    EscrowShortfallError,
    InsufficientFundsError,
    ValidationError,
)
from marketplace.shared.schemas.base import TransactionType
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)


def _positive(amount: Decimal) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError(f"Amount must be greater than 0, got {amount}")
    return amount


class EscrowEngine:
    """Lock, release, refund and split escrowed funds."""

    def __init__(self, session: AsyncSession, fee_percentage: Decimal | None = None):
        self.session = session
        self.ledger = LedgerRepository(session)
        if fee_percentage is None:
            fee_percentage = get_ledger_settings().platform_fee_percentage
        self.fee_percentage = Decimal(fee_percentage)

    async def lock(
        self,
        buyer_wallet: Wallet,
        amount: Decimal,
        reference_type: str,
        reference_id: UUID,
    ) -> Transaction:
        """Move ``amount`` from the buyer's balance into escrow."""
        amount = _positive(amount)
        if buyer_wallet.balance < amount:
            raise InsufficientFundsError(required=amount, available=buyer_wallet.balance)

        transaction = await self.ledger.apply(
            buyer_wallet,
            delta_balance=-amount,
            delta_escrow=amount,
            txn_type=TransactionType.ESCROW_LOCK.value,
            amount=amount,
            reference_type=reference_type,
            reference_id=reference_id,
            description=f"Escrow locked for {reference_type} {reference_id}",
        )
        logger.info(
            "escrow_locked",
            wallet_id=str(buyer_wallet.id),
            amount=str(amount),
            reference_id=str(reference_id),
        )
        return transaction

    async def release(
        self,
        buyer_wallet: Wallet,
        seller_wallet: Wallet,
        gross: Decimal,
        reference_type: str,
        reference_id: UUID,
        fee_percentage: Decimal | None = None,
    ) -> ReleaseBreakdown:
        """Pay escrowed ``gross`` to the seller, net of the platform fee."""
        gross = _positive(gross)
        if buyer_wallet.escrow_balance < gross:
            raise EscrowShortfallError(required=gross, available=buyer_wallet.escrow_balance)
        pct = self.fee_percentage if fee_percentage is None else Decimal(fee_percentage)
        breakdown = compute_release(gross, pct)

        await self._release_legs(buyer_wallet, seller_wallet, breakdown, pct, reference_type, reference_id)
        logger.info(
            "escrow_released",
            buyer_wallet_id=str(buyer_wallet.id),
            seller_wallet_id=str(seller_wallet.id),
            gross=str(breakdown.gross),
            platform_fee=str(breakdown.platform_fee),
            seller_net=str(breakdown.seller_net),
            reference_id=str(reference_id),
        )
        return breakdown

    async def refund(
        self,
        buyer_wallet: Wallet,
        amount: Decimal,
        reference_type: str,
        reference_id: UUID,
    ) -> Transaction:
        """Return escrowed ``amount`` to the buyer's spendable balance."""
        amount = _positive(amount)
        if buyer_wallet.escrow_balance < amount:
            raise EscrowShortfallError(required=amount, available=buyer_wallet.escrow_balance)

        transaction = await self._refund_leg(buyer_wallet, amount, reference_type, reference_id)
        logger.info(
            "escrow_refunded",
            wallet_id=str(buyer_wallet.id),
            amount=str(amount),
            reference_id=str(reference_id),
        )
        return transaction

    async def split(
        self,
        buyer_wallet: Wallet,
        seller_wallet: Wallet,
        gross: Decimal,
        buyer_refund_percentage: Decimal | int,
        reference_type: str,
        reference_id: UUID,
        fee_percentage: Decimal | None = None,
    ) -> SplitBreakdown:
        """Refund a share of escrowed ``gross`` and release the remainder.

        The fee is charged on the seller-bound portion only. Legs that come
        to zero are skipped.
        """
        gross = _positive(gross)
        if buyer_wallet.escrow_balance < gross:
            raise EscrowShortfallError(required=gross, available=buyer_wallet.escrow_balance)
        pct = self.fee_percentage if fee_percentage is None else Decimal(fee_percentage)
        try:
            breakdown = compute_split(gross, buyer_refund_percentage, pct)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if breakdown.buyer_refund > ZERO:
            await self._refund_leg(buyer_wallet, breakdown.buyer_refund, reference_type, reference_id)
        if breakdown.seller_gross > ZERO:
            release = ReleaseBreakdown(
                gross=breakdown.seller_gross,
                platform_fee=breakdown.platform_fee,
                seller_net=breakdown.seller_net,
            )
            await self._release_legs(buyer_wallet, seller_wallet, release, pct, reference_type, reference_id)

        logger.info(
            "escrow_split",
            buyer_wallet_id=str(buyer_wallet.id),
            seller_wallet_id=str(seller_wallet.id),
            gross=str(breakdown.gross),
            buyer_refund=str(breakdown.buyer_refund),
            platform_fee=str(breakdown.platform_fee),
            seller_net=str(breakdown.seller_net),
            reference_id=str(reference_id),
        )
        return breakdown

    async def top_up(
        self,
        wallet: Wallet,
        amount: Decimal,
        idempotency_key: str | None = None,
    ) -> Transaction:
        """Credit funds from the (mocked) payment rail."""
        amount = _positive(amount)
        replay = await self._replay(wallet, TransactionType.TOP_UP, amount, idempotency_key)
        if replay is not None:
            return replay

        transaction = await self.ledger.apply(
            wallet,
            delta_balance=amount,
            delta_escrow=ZERO,
            txn_type=TransactionType.TOP_UP.value,
            amount=amount,
            description="Mock payment top-up",
            idempotency_key=idempotency_key,
        )
        logger.info("wallet_topped_up", wallet_id=str(wallet.id), amount=str(amount))
        return transaction

    async def withdraw(
        self,
        wallet: Wallet,
        amount: Decimal,
        method: str,
        idempotency_key: str | None = None,
    ) -> Transaction:
        """Debit spendable funds to the (mocked) payout rail."""
        amount = _positive(amount)
        replay = await self._replay(wallet, TransactionType.WITHDRAWAL, amount, idempotency_key)
        if replay is not None:
            return replay
        if wallet.balance < amount:
            raise InsufficientFundsError(
                required=amount,
                available=wallet.balance,
                message="Insufficient balance",
            )

        transaction = await self.ledger.apply(
            wallet,
            delta_balance=-amount,
            delta_escrow=ZERO,
            txn_type=TransactionType.WITHDRAWAL.value,
            amount=amount,
            description=f"Withdrawal via {method} (mock)",
            idempotency_key=idempotency_key,
        )
        logger.info("wallet_withdrawn", wallet_id=str(wallet.id), amount=str(amount), method=method)
        return transaction

    async def _replay(
        self,
        wallet: Wallet,
        txn_type: TransactionType,
        amount: Decimal,
        idempotency_key: str | None,
    ) -> Transaction | None:
        if not idempotency_key:
            return None
        existing = await self.ledger.find_by_idempotency_key(wallet.id, idempotency_key)
        if existing is None:
            return None
        if existing.type != txn_type.value or to_money(existing.amount) != amount:
            raise ConflictError("Idempotency key was already used for a different request")
        logger.info(
            "idempotent_replay",
            wallet_id=str(wallet.id),
            transaction_id=str(existing.id),
            type=existing.type,
        )
        return existing

    async def _refund_leg(
        self,
        buyer_wallet: Wallet,
        amount: Decimal,
        reference_type: str,
        reference_id: UUID,
    ) -> Transaction:
        return await self.ledger.apply(
            buyer_wallet,
            delta_balance=amount,
            delta_escrow=-amount,
            txn_type=TransactionType.REFUND.value,
            amount=amount,
            reference_type=reference_type,
            reference_id=reference_id,
            description=f"Escrow refunded for {reference_type} {reference_id}",
        )

    async def _release_legs(
        self,
        buyer_wallet: Wallet,
        seller_wallet: Wallet,
        breakdown: ReleaseBreakdown,
        fee_percentage: Decimal,
        reference_type: str,
        reference_id: UUID,
    ) -> None:
        await self.ledger.apply(
            buyer_wallet,
            delta_balance=ZERO,
            delta_escrow=-breakdown.gross,
            txn_type=TransactionType.ESCROW_RELEASE.value,
            amount=breakdown.gross,
            reference_type=reference_type,
            reference_id=reference_id,
            description=f"Escrow released for {reference_type} {reference_id}",
        )
        if breakdown.seller_net > ZERO:
            await self.ledger.apply(
                seller_wallet,
                delta_balance=breakdown.seller_net,
                delta_escrow=ZERO,
                txn_type=TransactionType.ESCROW_RELEASE.value,
                amount=breakdown.seller_net,
                reference_type=reference_type,
                reference_id=reference_id,
                description=f"Payment received for {reference_type} {reference_id}",
            )
        if breakdown.platform_fee > ZERO:
            await self.ledger.apply(
                buyer_wallet,
                delta_balance=ZERO,
                delta_escrow=ZERO,
                txn_type=TransactionType.PLATFORM_FEE.value,
                amount=breakdown.platform_fee,
                reference_type=reference_type,
                reference_id=reference_id,
                description=f"Platform fee ({fee_percentage.normalize():f}%)",
            )
