"""Money arithmetic for the escrow ledger.

All amounts are ``Decimal`` quantized to cents with ROUND_HALF_UP. Fee
percentages are expressed on a 0-100 scale.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize a value to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_platform_fee(gross: Decimal, fee_percentage: Decimal) -> Decimal:
    """Fee kept by the platform on a release of ``gross``."""
    if fee_percentage < 0 or fee_percentage > HUNDRED:
        raise ValueError(f"fee_percentage must be within [0, 100], got {fee_percentage}")
    return to_money(Decimal(gross) * Decimal(fee_percentage) / HUNDRED)


@dataclass(frozen=True)
class ReleaseBreakdown:
    """How a released escrow amount is divided."""

    gross: Decimal
    platform_fee: Decimal
    seller_net: Decimal


@dataclass(frozen=True)
class SplitBreakdown:
    """How a disputed escrow amount is divided between buyer and seller."""

    gross: Decimal
    buyer_refund: Decimal
    seller_gross: Decimal
    platform_fee: Decimal
    seller_net: Decimal


def compute_release(gross: Decimal, fee_percentage: Decimal) -> ReleaseBreakdown:
    """Split ``gross`` into platform fee and seller net."""
    gross = to_money(gross)
    fee = calculate_platform_fee(gross, fee_percentage)
    return ReleaseBreakdown(gross=gross, platform_fee=fee, seller_net=gross - fee)


def compute_split(
    gross: Decimal,
    buyer_refund_percentage: Decimal | int,
    fee_percentage: Decimal,
) -> SplitBreakdown:
    """Refund a share of ``gross`` to the buyer and release the rest.

    The fee applies only to the seller-bound remainder. The legs always sum
    back to ``gross``.
    """
    pct = Decimal(buyer_refund_percentage)
    if pct < 0 or pct > HUNDRED:
        raise ValueError(f"refund percentage must be within [0, 100], got {pct}")
    gross = to_money(gross)
    buyer_refund = to_money(gross * pct / HUNDRED)
    release = compute_release(gross - buyer_refund, fee_percentage)
    return SplitBreakdown(
        gross=gross,
        buyer_refund=buyer_refund,
        seller_gross=release.gross,
        platform_fee=release.platform_fee,
        seller_net=release.seller_net,
    )
