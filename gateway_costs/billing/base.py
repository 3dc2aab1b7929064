"""
Interfaces of the billing API clients.
"""

from datetime import date
from typing import List, Protocol

from gateway_costs.storage.models import CostLineItem, CostRecord, Dimension, QueryKind


class CostFetcher(Protocol):
    """Fetches one time series (fixed query kind and filter) from the billing API."""

    def fetch(self, start: date, end: date) -> List[CostRecord]:
        ...


class BillingClient(Protocol):
    """Client of the external cost-and-usage API."""

    def cost_fetcher(self, query_kind: QueryKind, filter_id: str) -> CostFetcher:
        ...

    def fetch_line_items(
        self,
        dimension: Dimension,
        start: date,
        end: date,
        filter_id: str = "",
    ) -> List[CostLineItem]:
        ...
