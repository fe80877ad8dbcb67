"""Repository layer for wallets and the append-only transaction log."""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Transaction, Wallet
from marketplace.ledger.fees import ZERO, to_money
from marketplace.shared.exceptions import EscrowShortfallError, InsufficientFundsError
from marketplace.shared.schemas.base import TransactionType
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# A release row credits the seller; the buyer-side row only moves escrow.
_EARNING_CREDIT = and_(
    Transaction.type == TransactionType.ESCROW_RELEASE.value,
    Transaction.balance_after > Transaction.balance_before,
)


class LedgerRepository:
    """Wallet rows and their transaction log.

    Every balance change goes through :meth:`apply`, which writes the
    matching transaction row in the same session. Callers are expected to
    hold the wallet row lock (see :meth:`get_wallet_for_update`).
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _ensure_wallet(self, user_id: UUID) -> None:
        dialect = self.session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Unsupported database dialect for wallets: {dialect}")
        stmt = (
            insert(Wallet)
            .values(id=uuid4(), user_id=user_id, balance=ZERO, escrow_balance=ZERO)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        result = await self.session.execute(stmt)
        if result.rowcount:
            logger.info("wallet_created", user_id=str(user_id))

    async def get_wallet(self, user_id: UUID) -> Wallet:
        """Return the user's wallet, creating an empty one on first access."""
        query = select(Wallet).where(Wallet.user_id == user_id)
        wallet = (await self.session.execute(query)).scalar_one_or_none()
        if wallet is not None:
            return wallet
        await self._ensure_wallet(user_id)
        return (await self.session.execute(query)).scalar_one()

    async def get_wallet_for_update(self, user_id: UUID) -> Wallet:
        """Return the user's wallet with its row locked until commit."""
        wallets = await self.lock_wallets(user_id)
        return wallets[user_id]

    async def lock_wallets(self, *user_ids: UUID) -> dict[UUID, Wallet]:
        """Lock the wallets of several users in ascending wallet id order.

        The ordering is shared by every multi-wallet operation so two
        transactions touching the same pair of wallets cannot deadlock.
        """
        wanted = set(user_ids)
        for user_id in sorted(wanted, key=str):
            await self._ensure_wallet(user_id)
        query = (
            select(Wallet)
            .where(Wallet.user_id.in_(wanted))
            .order_by(Wallet.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return {wallet.user_id: wallet for wallet in result.scalars().all()}

    async def apply(
        self,
        wallet: Wallet,
        delta_balance: Decimal,
        delta_escrow: Decimal,
        txn_type: str,
        amount: Decimal,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> Transaction:
        """Mutate a locked wallet and append its transaction row.

        ``balance_before``/``balance_after`` record the spendable balance as
        read from the locked row at the moment of mutation.
        """
        balance_before = wallet.balance
        new_balance = wallet.balance + delta_balance
        new_escrow = wallet.escrow_balance + delta_escrow
        if new_balance < 0:
            raise InsufficientFundsError(required=-delta_balance, available=wallet.balance)
        if new_escrow < 0:
            raise EscrowShortfallError(required=-delta_escrow, available=wallet.escrow_balance)

        wallet.balance = new_balance
        wallet.escrow_balance = new_escrow
        transaction = Transaction(
            wallet_id=wallet.id,
            type=txn_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=new_balance,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            idempotency_key=idempotency_key,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def list_transactions(
        self,
        wallet_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        """Newest-first page of a wallet's transactions with the total count."""
        count_query = select(func.count()).select_from(Transaction).where(
            Transaction.wallet_id == wallet_id
        )
        total = (await self.session.execute(count_query)).scalar() or 0

        query = (
            select(Transaction)
            .where(Transaction.wallet_id == wallet_id)
            .order_by(Transaction.created_at.desc(), Transaction.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def total_earned(self, wallet_id: UUID) -> Decimal:
        """Sum of escrow releases credited to the wallet's spendable balance."""
        query = select(func.sum(Transaction.amount)).where(
            Transaction.wallet_id == wallet_id,
            _EARNING_CREDIT,
        )
        value = (await self.session.execute(query)).scalar()
        return ZERO if value is None else to_money(Decimal(str(value)))

    async def list_earnings(self, wallet_id: UUID, limit: int = 50) -> list[Transaction]:
        """Newest-first release credits and withdrawals of a wallet."""
        query = (
            select(Transaction)
            .where(
                Transaction.wallet_id == wallet_id,
                or_(_EARNING_CREDIT, Transaction.type == TransactionType.WITHDRAWAL.value),
            )
            .order_by(Transaction.created_at.desc(), Transaction.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_by_reference(self, reference_type: str, reference_id: UUID) -> list[Transaction]:
        query = (
            select(Transaction)
            .where(
                Transaction.reference_type == reference_type,
                Transaction.reference_id == reference_id,
            )
            .order_by(Transaction.created_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_by_idempotency_key(self, wallet_id: UUID, key: str) -> Transaction | None:
        query = select(Transaction).where(
            Transaction.wallet_id == wallet_id,
            Transaction.idempotency_key == key,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()
