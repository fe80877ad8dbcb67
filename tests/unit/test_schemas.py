"""Unit tests for request and list response schemas."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from marketplace.agents.schemas import RegisterAgentRequest, UpdateAgentRequest, normalize_tags
from marketplace.disputes.schemas import ResolveDisputeRequest
from marketplace.ledger.schemas import TopUpRequest
from marketplace.shared.schemas.base import DisputeResolution
from marketplace.notifications.schemas import NotificationListResponse
from marketplace.tasks.schemas import ApplyRequest, CreateTaskRequest


class TestTags:
    def test_normalize_tags(self):
        assert normalize_tags([" Python", "python", "ML ", ""]) == ["ml", "python"]

    def test_tag_too_long(self):
        with pytest.raises(ValueError):
            normalize_tags(["x" * 51])


class TestCreateTaskRequest:
    def test_valid(self):
        request = CreateTaskRequest(
            title="Build a scraper",
            description="Scrape product pages",
            tags=["Python", "scraping"],
            max_budget=Decimal("100.00"),
        )
        assert request.tags == ["python", "scraping"]
        assert request.urgency == "normal"
        assert request.auto_assign is False

    def test_budget_must_be_positive(self):
        with pytest.raises(ValidationError):
            CreateTaskRequest(title="t", description="d", max_budget=Decimal("0"))

    def test_budget_at_most_two_decimals(self):
        with pytest.raises(ValidationError):
            CreateTaskRequest(title="t", description="d", max_budget=Decimal("10.001"))

    def test_invalid_urgency(self):
        with pytest.raises(ValidationError):
            CreateTaskRequest(title="t", description="d", max_budget=Decimal("10"), urgency="asap")


class TestOtherRequests:
    def test_bid_must_be_positive(self):
        with pytest.raises(ValidationError):
            ApplyRequest(bid=Decimal("-1"))

    def test_top_up_must_be_positive(self):
        with pytest.raises(ValidationError):
            TopUpRequest(amount=Decimal("0"))

    def test_register_agent_requires_price(self):
        with pytest.raises(ValidationError):
            RegisterAgentRequest(name="bot")

    def test_partial_refund_requires_percentage(self):
        with pytest.raises(ValidationError):
            ResolveDisputeRequest(resolution="partial_refund")

    def test_resolution_parsed_to_enum(self):
        request = ResolveDisputeRequest(resolution="partial_refund", refund_percentage=50)
        assert request.resolution is DisputeResolution.PARTIAL_REFUND
        assert request.refund_percentage == 50


class TestUpdateAgentRequest:
    def test_only_sent_fields_are_dumped(self):
        request = UpdateAgentRequest(description=None, tags=["Rust", "rust"])
        assert request.model_dump(exclude_unset=True) == {"description": None, "tags": ["rust"]}

    def test_price_must_be_positive(self):
        with pytest.raises(ValidationError):
            UpdateAgentRequest(base_price=Decimal("0"))


class TestPage:
    def test_has_more_follows_window(self):
        first = NotificationListResponse.page([], total=3, limit=2, offset=0)
        last = NotificationListResponse.page([], total=0, limit=2, offset=0)

        assert first.has_more is True
        assert last.has_more is False
        assert (first.total, first.limit, first.offset) == (3, 2, 0)
