"""
Tests for the cost service: breakdowns, labels, user resolution, and the directory.
"""

import asyncio
import os
import tempfile
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from gateway_costs.billing.demo import (
    ALICE_ID,
    BOB_ID,
    CHARLIE_ID,
    HAIKU_ID,
    OPUS_ID,
    DemoBillingClient,
    demo_directory,
)
from gateway_costs.core.reconciler import ReconcilingQueryService
from gateway_costs.core.service import CostService
from gateway_costs.storage.cache import CostCacheStore
from gateway_costs.storage.identity import StaticDirectory
from gateway_costs.storage.models import (
    CostLineItem,
    Dimension,
    DimensionCost,
    ModelInfo,
    QueryKind,
    UserInfo,
)

NOW = datetime(2024, 3, 15, tzinfo=timezone.utc)
JANUARY = (date(2024, 1, 1), date(2024, 2, 1))


def _item(entity_id: str, amount: str, day: str = "2024-01-01") -> CostLineItem:
    return CostLineItem(date=day, entity_id=entity_id, amount=Decimal(amount), currency="USD")


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as temp_dir:
        cache = CostCacheStore(os.path.join(temp_dir, "cache.db"))
        cache.initialize_schema()
        yield cache


def _service(billing, store, directory=None) -> CostService:
    reconciler = ReconcilingQueryService(billing, store, clock=lambda: NOW)
    return CostService(reconciler, directory or StaticDirectory({}, {}))


def _run(service, coroutine):
    async def go():
        try:
            return await coroutine
        finally:
            await service.drain()
    return asyncio.run(go())


class TestBreakdowns:
    """Test per-user and per-model breakdowns."""

    def test_cost_by_user_sums_months_and_labels(self, store):
        """Rows for the same user across months collapse into one labelled total."""
        billing = MagicMock()
        billing.fetch_line_items.return_value = [
            _item("u1", "10.00", "2024-01-01"),
            _item("u2", "5.00", "2024-01-01"),
            _item("u1", "20.00", "2024-02-01"),
        ]
        directory = StaticDirectory({"u1": "alice@example.com"}, {})
        service = _service(billing, store, directory)

        costs = _run(service, service.cost_by_user(date(2024, 1, 1), date(2024, 3, 1)))

        assert costs == [
            DimensionCost("u1", "alice@example.com", Decimal("30.00"), "USD"),
            DimensionCost("u2", None, Decimal("5.00"), "USD"),
        ]
        billing.fetch_line_items.assert_called_once_with(
            Dimension.USER, date(2024, 1, 1), date(2024, 3, 1), ""
        )

    def test_cost_by_model_uses_model_names(self, store):
        billing = MagicMock()
        billing.fetch_line_items.return_value = [_item("m1", "7.50")]
        directory = StaticDirectory({}, {"m1": "claude-3-haiku"})
        service = _service(billing, store, directory)

        costs = _run(service, service.cost_by_model(*JANUARY))

        assert costs[0].entity_label == "claude-3-haiku"
        assert costs[0].display_name == "claude-3-haiku"

    def test_filtered_breakdowns_pass_filter_id(self, store):
        """Cross-dimension breakdowns request the other dimension with a filter."""
        billing = MagicMock()
        billing.fetch_line_items.return_value = []
        service = _service(billing, store)

        _run(service, service.cost_by_model_for_user(*JANUARY, "u1"))
        _run(service, service.cost_by_user_for_model(*JANUARY, "m1"))

        assert billing.fetch_line_items.call_args_list[0].args == (Dimension.MODEL, *JANUARY, "user:u1")
        assert billing.fetch_line_items.call_args_list[1].args == (Dimension.USER, *JANUARY, "model:m1")

    def test_billing_failure_returns_empty(self, store):
        """A failing billing call yields no rows rather than an error."""
        billing = MagicMock()
        billing.fetch_line_items.side_effect = RuntimeError("throttled")
        service = _service(billing, store)

        assert _run(service, service.cost_by_user(*JANUARY)) == []

    def test_failed_label_lookup_shows_raw_id(self, store):
        """A directory error leaves the label empty."""
        billing = MagicMock()
        billing.fetch_line_items.return_value = [_item("u1", "1.00")]
        directory = MagicMock()
        directory.user_email_for.side_effect = RuntimeError("directory offline")
        service = _service(billing, store, directory)

        costs = _run(service, service.cost_by_user(*JANUARY))

        assert costs[0].entity_label is None
        assert costs[0].display_name == "u1"


class TestDemoData:
    """Test the service end to end against demo billing."""

    def test_users_ordered_by_spend(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        costs = _run(service, service.cost_by_user(*JANUARY))

        assert [c.entity_id for c in costs] == [ALICE_ID, BOB_ID, CHARLIE_ID]
        assert costs[0].entity_label == "alice@example.com"
        assert costs[0].amount == Decimal("120.50")

    def test_models_for_user(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        costs = _run(service, service.cost_by_model_for_user(*JANUARY, CHARLIE_ID))

        assert [c.entity_id for c in costs][0] == OPUS_ID
        assert sum(c.amount for c in costs) == Decimal("45.20")

    def test_users_for_model(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        costs = _run(service, service.cost_by_user_for_model(*JANUARY, HAIKU_ID))

        assert [(c.entity_label, c.amount) for c in costs] == [
            ("alice@example.com", Decimal("22.00")),
            ("bob@example.com", Decimal("12.60")),
            ("charlie@example.com", Decimal("8.00")),
        ]

    def test_daily_series_is_cached(self, store):
        """Series queries go through the cache layer."""
        service = _service(DemoBillingClient(), store, demo_directory())

        records = _run(service, service.daily_cost(date(2024, 3, 1), date(2024, 3, 16)))

        assert len(records) == 15
        cached = store.get(QueryKind.DAILY, "", "2024-03-01", "2024-03-16")
        assert len(cached) == 14

    def test_filtered_series_uses_filter_id(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        _run(service, service.monthly_cost_for_model(date(2024, 1, 1), date(2024, 3, 1), OPUS_ID))

        cached = store.get(QueryKind.MONTHLY, f"model:{OPUS_ID}", "2024-01-01", "2024-03-01")
        assert [r.date for r in cached] == ["2024-01-01", "2024-02-01"]


class TestResolveUser:
    """Test accepting emails in place of user ids."""

    def test_email_resolved_to_id(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        assert _run(service, service.resolve_user("bob@example.com")) == BOB_ID

    def test_id_returned_unchanged(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        assert _run(service, service.resolve_user(ALICE_ID)) == ALICE_ID

    def test_unknown_email_returned_unchanged(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        assert _run(service, service.resolve_user("nobody@example.com")) == "nobody@example.com"


class TestDirectory:
    """Test directory listings and detail entries."""

    def test_list_users_and_models(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        known_users = _run(service, service.list_users())
        known_models = _run(service, service.list_models())

        assert [email for _, email in known_users] == [
            "alice@example.com", "bob@example.com", "charlie@example.com"
        ]
        assert known_models[0] == (HAIKU_ID, "claude-3-haiku")
        assert len(known_models) == 4

    def test_failing_directory_lists_nothing(self, store):
        directory = MagicMock()
        directory.list_users.side_effect = RuntimeError("directory offline")
        service = _service(DemoBillingClient(), store, directory)

        assert _run(service, service.list_users()) == []

    def test_user_info_from_directory(self, store):
        directory = MagicMock()
        directory.user_info.return_value = UserInfo(ALICE_ID, "alice@example.com", "2024-01-02", 2, 1, 3)
        service = _service(DemoBillingClient(), store, directory)

        info = _run(service, service.user_info(ALICE_ID))

        assert info.active_api_key_count == 1
        directory.user_email_for.assert_not_called()

    def test_user_info_falls_back_to_email(self, store):
        """Users without a full entry still show their email."""
        directory = MagicMock()
        directory.user_info.return_value = None
        directory.user_email_for.return_value = "bob@example.com"
        service = _service(DemoBillingClient(), store, directory)

        assert _run(service, service.user_info(BOB_ID)) == UserInfo(BOB_ID, "bob@example.com")

    def test_unknown_model_info(self, store):
        service = _service(DemoBillingClient(), store, demo_directory())

        assert _run(service, service.model_info("m-unknown")) == ModelInfo("m-unknown", "unknown")
