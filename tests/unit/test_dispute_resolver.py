"""Unit tests for dispute resolution splits."""

from decimal import Decimal

import pytest

from marketplace.disputes.resolver import compute_resolution, validate_resolution
from marketplace.shared.exceptions import ValidationError

FEE = Decimal("20")


class TestComputeResolution:
    def test_full_refund_returns_everything_without_fee(self):
        split = compute_resolution("full_refund", Decimal("80.00"), FEE)
        assert split.buyer_refund == Decimal("80.00")
        assert split.seller_gross == Decimal("0.00")
        assert split.platform_fee == Decimal("0.00")
        assert split.seller_net == Decimal("0.00")

    def test_release_pays_seller_net_of_fee(self):
        split = compute_resolution("release", Decimal("80.00"), FEE)
        assert split.buyer_refund == Decimal("0.00")
        assert split.platform_fee == Decimal("16.00")
        assert split.seller_net == Decimal("64.00")

    def test_partial_refund_charges_fee_on_remainder_only(self):
        split = compute_resolution("partial_refund", Decimal("80.00"), FEE, refund_percentage=50)
        assert split.buyer_refund == Decimal("40.00")
        assert split.seller_gross == Decimal("40.00")
        assert split.platform_fee == Decimal("8.00")
        assert split.seller_net == Decimal("32.00")

    def test_partial_refund_conserves_price(self):
        price = Decimal("99.99")
        for pct in range(0, 101, 7):
            split = compute_resolution("partial_refund", price, FEE, refund_percentage=pct)
            assert split.buyer_refund + split.seller_gross == price
            assert split.seller_net + split.platform_fee == split.seller_gross


class TestValidateResolution:
    def test_unknown_resolution(self):
        with pytest.raises(ValidationError, match="Invalid resolution type"):
            validate_resolution("split_the_difference", None)

    def test_partial_refund_requires_percentage(self):
        with pytest.raises(ValidationError):
            validate_resolution("partial_refund", None)

    def test_partial_refund_percentage_range(self):
        with pytest.raises(ValidationError):
            validate_resolution("partial_refund", 101)
        with pytest.raises(ValidationError):
            validate_resolution("partial_refund", -5)

    def test_percentage_ignored_for_other_resolutions(self):
        validate_resolution("release", None)
        validate_resolution("full_refund", 250)
