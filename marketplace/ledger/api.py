"""API endpoints for wallets and earnings."""

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.session import get_db
from marketplace.ledger.schemas import (
    EarningsResponse,
    EarningsSummary,
    TopUpRequest,
    TransactionListResponse,
    TransactionReceipt,
    TransactionResponse,
    WalletResponse,
    WithdrawRequest,
)
from marketplace.ledger.service import WalletService
from marketplace.security.auth import Principal, get_current_principal
from marketplace.shared.exceptions import MarketplaceError, raise_http_exception
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])
earnings_router = APIRouter(prefix="/earnings", tags=["wallet"])


def _receipt(transaction) -> TransactionReceipt:
    return TransactionReceipt(
        transaction_id=transaction.id,
        type=transaction.type,
        amount=transaction.amount,
        balance_after=transaction.balance_after,
    )


@router.get("", response_model=WalletResponse)
async def get_wallet(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    """Get the caller's wallet, creating it on first access."""
    try:
        service = WalletService(db)
        wallet = await service.get_wallet(principal.user_id)
        await db.commit()
        return WalletResponse.model_validate(wallet)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TransactionListResponse:
    """List the caller's ledger entries, newest first."""
    try:
        service = WalletService(db)
        items, total = await service.list_transactions(principal.user_id, limit, offset)
        await db.commit()
        return TransactionListResponse.page(
            [TransactionResponse.model_validate(t) for t in items],
            total,
            limit,
            offset,
        )
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/top-up", response_model=TransactionReceipt)
async def top_up(
    body: TopUpRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=255),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TransactionReceipt:
    """Add funds through the mocked payment rail."""
    try:
        service = WalletService(db)
        transaction = await service.top_up(principal.user_id, body.amount, idempotency_key)
        await db.commit()
        return _receipt(transaction)
    except MarketplaceError as e:
        raise_http_exception(e)


@router.post("/withdraw", response_model=TransactionReceipt)
async def withdraw(
    body: WithdrawRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=255),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TransactionReceipt:
    """Withdraw spendable funds through the mocked payout rail."""
    try:
        service = WalletService(db)
        transaction = await service.withdraw(
            principal.user_id, body.amount, body.method, idempotency_key
        )
        await db.commit()
        return _receipt(transaction)
    except MarketplaceError as e:
        raise_http_exception(e)


@earnings_router.get("", response_model=EarningsResponse)
async def get_earnings(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> EarningsResponse:
    """Total paid out to the caller, wallet position and recent payouts."""
    try:
        service = WalletService(db)
        earnings = await service.get_earnings(principal.user_id)
        await db.commit()
        return EarningsResponse(
            earnings=EarningsSummary(
                total_earned=earnings.total_earned,
                pending_escrow=earnings.pending_escrow,
                available=earnings.available,
            ),
            transactions=[TransactionResponse.model_validate(t) for t in earnings.transactions],
        )
    except MarketplaceError as e:
        raise_http_exception(e)
