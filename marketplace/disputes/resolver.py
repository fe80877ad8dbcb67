"""Three-way split of a disputed escrow amount."""

from dataclasses import dataclass
from decimal import Decimal

from marketplace.ledger.fees import ZERO, compute_release, compute_split, to_money
from marketplace.shared.exceptions import ValidationError
from marketplace.shared.schemas.base import DisputeResolution

RESOLUTIONS = frozenset(r.value for r in DisputeResolution)


@dataclass(frozen=True)
class ResolutionSplit:
    """Where the escrowed price goes under a resolution.

    ``buyer_refund + seller_gross`` always equals the price, and
    ``seller_gross = seller_net + platform_fee``.
    """

    buyer_refund: Decimal
    seller_gross: Decimal
    platform_fee: Decimal
    seller_net: Decimal


def validate_resolution(resolution: str, refund_percentage: int | None) -> None:
    if resolution not in RESOLUTIONS:
        raise ValidationError("Invalid resolution type")
    if resolution == DisputeResolution.PARTIAL_REFUND.value:
        if refund_percentage is None or not 0 <= refund_percentage <= 100:
            raise ValidationError(
                "refund_percentage must be between 0 and 100 for partial refunds"
            )


def compute_resolution(
    resolution: str,
    price: Decimal,
    fee_percentage: Decimal,
    refund_percentage: int | None = None,
) -> ResolutionSplit:
    """Split ``price`` between buyer, seller and platform.

    full_refund returns everything to the buyer with no fee. release pays
    the seller net of the fee. partial_refund refunds ``refund_percentage``
    of the price and charges the fee on the seller-bound remainder only.
    """
    validate_resolution(resolution, refund_percentage)
    price = to_money(price)

    if resolution == DisputeResolution.FULL_REFUND.value:
        return ResolutionSplit(
            buyer_refund=price,
            seller_gross=ZERO,
            platform_fee=ZERO,
            seller_net=ZERO,
        )
    if resolution == DisputeResolution.RELEASE.value:
        release = compute_release(price, fee_percentage)
        return ResolutionSplit(
            buyer_refund=ZERO,
            seller_gross=release.gross,
            platform_fee=release.platform_fee,
            seller_net=release.seller_net,
        )
    split = compute_split(price, refund_percentage, fee_percentage)
    return ResolutionSplit(
        buyer_refund=split.buyer_refund,
        seller_gross=split.seller_gross,
        platform_fee=split.platform_fee,
        seller_net=split.seller_net,
    )
