"""
Demo billing client.

Serves deterministic fake spend for three users and four models so the
dashboard can be explored without cloud credentials.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Tuple

from gateway_costs.core.freshness import DateRange, bucket_dates
from gateway_costs.storage.identity import StaticDirectory
from gateway_costs.storage.models import (
    CostFilter,
    CostLineItem,
    CostRecord,
    Dimension,
    QueryKind,
)

ALICE_ID = "00000000-0000-0000-0000-000000000001"
BOB_ID = "00000000-0000-0000-0000-000000000002"
CHARLIE_ID = "00000000-0000-0000-0000-000000000003"

OPUS_ID = "00000000-0000-0000-0000-000000000011"
SONNET_ID = "00000000-0000-0000-0000-000000000012"
HAIKU_ID = "00000000-0000-0000-0000-000000000013"
SONNET35_ID = "00000000-0000-0000-0000-000000000014"

DEMO_USERS = {
    ALICE_ID: "alice@example.com",
    BOB_ID: "bob@example.com",
    CHARLIE_ID: "charlie@example.com",
}

DEMO_MODELS = {
    OPUS_ID: "claude-3-opus",
    SONNET_ID: "claude-3-sonnet",
    HAIKU_ID: "claude-3-haiku",
    SONNET35_ID: "claude-3.5-sonnet",
}

# (user_id, model_id, monthly amount)
DEMO_SPEND: List[Tuple[str, str, Decimal]] = [
    (ALICE_ID, OPUS_ID, Decimal("48.30")),
    (ALICE_ID, SONNET_ID, Decimal("35.20")),
    (ALICE_ID, HAIKU_ID, Decimal("22.00")),
    (ALICE_ID, SONNET35_ID, Decimal("15.00")),
    (BOB_ID, OPUS_ID, Decimal("32.50")),
    (BOB_ID, SONNET_ID, Decimal("25.80")),
    (BOB_ID, HAIKU_ID, Decimal("12.60")),
    (BOB_ID, SONNET35_ID, Decimal("18.40")),
    (CHARLIE_ID, OPUS_ID, Decimal("15.00")),
    (CHARLIE_ID, SONNET_ID, Decimal("11.40")),
    (CHARLIE_ID, HAIKU_ID, Decimal("8.00")),
    (CHARLIE_ID, SONNET35_ID, Decimal("10.80")),
]

DAILY_AMOUNTS = [
    Decimal("45.20"), Decimal("52.80"), Decimal("38.90"), Decimal("61.40"),
    Decimal("55.10"), Decimal("48.60"), Decimal("42.30"),
]

MONTHLY_AMOUNTS = [
    Decimal("820.50"), Decimal("945.30"), Decimal("780.10"),
    Decimal("1102.40"), Decimal("890.70"), Decimal("960.20"),
]

CENT = Decimal("0.01")


def demo_directory() -> StaticDirectory:
    return StaticDirectory(DEMO_USERS, DEMO_MODELS)


def _share(cost_filter: CostFilter) -> Decimal:
    """Fraction of total spend attributed to the filtered entity."""
    if cost_filter.is_empty:
        return Decimal("1")
    index = 0 if cost_filter.dimension is Dimension.USER else 1
    grand_total = sum(row[2] for row in DEMO_SPEND)
    entity_total = sum(
        (row[2] for row in DEMO_SPEND if row[index] == cost_filter.entity_id),
        Decimal("0"),
    )
    return entity_total / grand_total


@dataclass(frozen=True)
class DemoSeriesFetcher:
    query_kind: QueryKind
    cost_filter: CostFilter

    def fetch(self, start: date, end: date) -> List[CostRecord]:
        share = _share(self.cost_filter)
        records = []
        for bucket in bucket_dates(self.query_kind, DateRange(start, end)):
            if self.query_kind is QueryKind.DAILY:
                base = DAILY_AMOUNTS[bucket.toordinal() % len(DAILY_AMOUNTS)]
            else:
                base = MONTHLY_AMOUNTS[(bucket.year * 12 + bucket.month) % len(MONTHLY_AMOUNTS)]
            records.append(CostRecord(
                date=bucket.isoformat(),
                amount=(base * share).quantize(CENT, rounding=ROUND_HALF_UP),
                currency="USD",
            ))
        return records


class DemoBillingClient:
    """Billing client returning fixed demo data for any range."""

    def cost_fetcher(self, query_kind: QueryKind, filter_id: str) -> DemoSeriesFetcher:
        return DemoSeriesFetcher(QueryKind(query_kind), CostFilter.parse(filter_id))

    def fetch_line_items(
        self,
        dimension: Dimension,
        start: date,
        end: date,
        filter_id: str = "",
    ) -> List[CostLineItem]:
        """One row per entity per month bucket, like a grouped Cost Explorer query."""
        dimension = Dimension(dimension)
        cost_filter = CostFilter.parse(filter_id)
        items = []
        for bucket in bucket_dates(QueryKind.MONTHLY, DateRange(start, end)):
            for user_id, model_id, amount in DEMO_SPEND:
                if cost_filter.dimension is Dimension.USER and user_id != cost_filter.entity_id:
                    continue
                if cost_filter.dimension is Dimension.MODEL and model_id != cost_filter.entity_id:
                    continue
                items.append(CostLineItem(
                    date=bucket.isoformat(),
                    entity_id=user_id if dimension is Dimension.USER else model_id,
                    amount=amount,
                    currency="USD",
                ))
        return items
