"""
AWS Cost Explorer billing client.

Gateway traffic is attributed through cost allocation tags: every request is
billed with a user tag and a model tag, so filters and breakdowns are tag
expressions. Cost Explorer is slow, paginated, throttled to a few requests per
second, and charges per request, which is why results are cached upstream.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from gateway_costs.config.loader import BillingConfig
from gateway_costs.storage.models import (
    CostFilter,
    CostLineItem,
    CostRecord,
    Dimension,
    QueryKind,
)

logger = logging.getLogger(__name__)

THROTTLING_ERROR_CODES = frozenset({
    "ThrottlingException",
    "LimitExceededException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
})

DEFAULT_CURRENCY = "USD"


def _is_throttling(exc: BaseException) -> bool:
    if not isinstance(exc, ClientError):
        return False
    return exc.response.get("Error", {}).get("Code") in THROTTLING_ERROR_CODES


def _tag_equals(key: str, value: str) -> Dict[str, Any]:
    return {"Tags": {"Key": key, "Values": [value], "MatchOptions": ["EQUALS"]}}


def _tag_present(key: str) -> Dict[str, Any]:
    return {"Not": {"Tags": {"Key": key, "MatchOptions": ["ABSENT"]}}}


def extract_metric(metrics: Optional[Dict[str, Any]], metric: str) -> Tuple[Decimal, str]:
    """Read amount and unit of a metric; missing or malformed values count as 0 USD."""
    value = (metrics or {}).get(metric)
    if not value:
        return Decimal("0"), DEFAULT_CURRENCY
    try:
        amount = Decimal(value.get("Amount", "0"))
    except (InvalidOperation, TypeError):
        amount = Decimal("0")
    return amount, value.get("Unit") or DEFAULT_CURRENCY


@dataclass(frozen=True)
class CostSeriesFetcher:
    """Fetcher bound to one query kind and filter."""
    client: "CostExplorerClient"
    query_kind: QueryKind
    cost_filter: CostFilter

    def fetch(self, start: date, end: date) -> List[CostRecord]:
        return self.client.fetch_series(self.query_kind, self.cost_filter, start, end)


class CostExplorerClient:
    """Billing client over the boto3 ``ce`` API.

    One instance wraps one boto3 client and is meant to be created once at
    startup and shared; boto3 clients are thread-safe.
    """

    def __init__(self, ce_client: Any = None, config: Optional[BillingConfig] = None):
        """Initialize the client.

        Args:
            ce_client: Existing boto3 Cost Explorer client; built from config if omitted
            config: Billing configuration (defaults apply when omitted)
        """
        self.config = config or BillingConfig()
        if ce_client is None:
            session = boto3.session.Session(
                profile_name=self.config.profile,
                region_name=self.config.region,
            )
            ce_client = session.client("ce")
        self._ce = ce_client

    def _tag_for(self, dimension: Dimension) -> str:
        if dimension is Dimension.USER:
            return self.config.user_tag
        return self.config.model_tag

    def _filter_expression(self, cost_filter: CostFilter, group_dimension: Optional[Dimension] = None) -> Dict[str, Any]:
        """Build the Cost Explorer filter for a query.

        Only tagged gateway costs are counted: the grouped tag (or the user
        tag for plain series) must be present.
        """
        present = _tag_present(self._tag_for(group_dimension or Dimension.USER))
        if cost_filter.is_empty:
            return present
        equals = _tag_equals(self._tag_for(cost_filter.dimension), cost_filter.entity_id)
        if group_dimension is None:
            return equals
        return {"And": [present, equals]}

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=self.config.retry_wait_seconds, max=30),
            retry=retry_if_exception(_is_throttling),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _pages(self, **request: Any) -> Iterator[Dict[str, Any]]:
        """Yield every response page, following NextPageToken."""
        next_token = None
        while True:
            kwargs = dict(request)
            if next_token:
                kwargs["NextPageToken"] = next_token
            response = self._retrying()(self._ce.get_cost_and_usage, **kwargs)
            yield response
            next_token = response.get("NextPageToken")
            if not next_token:
                break

    def cost_fetcher(self, query_kind: QueryKind, filter_id: str) -> CostSeriesFetcher:
        return CostSeriesFetcher(self, QueryKind(query_kind), CostFilter.parse(filter_id))

    def fetch_series(
        self,
        query_kind: QueryKind,
        cost_filter: CostFilter,
        start: date,
        end: date,
    ) -> List[CostRecord]:
        """Fetch total cost per time bucket.

        Raises:
            botocore.exceptions.ClientError: On API errors (after retrying throttling)
            botocore.exceptions.BotoCoreError: On network or credential errors
        """
        records = []
        for page in self._pages(
            TimePeriod={"Start": start.isoformat(), "End": end.isoformat()},
            Granularity=QueryKind(query_kind).value.upper(),
            Metrics=[self.config.metric],
            Filter=self._filter_expression(cost_filter),
        ):
            for result in page.get("ResultsByTime", []):
                amount, currency = extract_metric(result.get("Total"), self.config.metric)
                records.append(CostRecord(
                    date=result["TimePeriod"]["Start"],
                    amount=amount,
                    currency=currency,
                ))
        return records

    def fetch_line_items(
        self,
        dimension: Dimension,
        start: date,
        end: date,
        filter_id: str = "",
    ) -> List[CostLineItem]:
        """Fetch cost per entity per month, grouped by the dimension's tag.

        Groups without a tag value (untagged spend) are skipped.
        """
        dimension = Dimension(dimension)
        tag = self._tag_for(dimension)
        prefix = f"{tag}$"
        items = []
        for page in self._pages(
            TimePeriod={"Start": start.isoformat(), "End": end.isoformat()},
            Granularity="MONTHLY",
            Metrics=[self.config.metric],
            Filter=self._filter_expression(CostFilter.parse(filter_id), dimension),
            GroupBy=[{"Type": "TAG", "Key": tag}],
        ):
            for result in page.get("ResultsByTime", []):
                bucket = result["TimePeriod"]["Start"]
                for group in result.get("Groups", []):
                    keys = group.get("Keys") or [""]
                    entity_id = keys[0]
                    if entity_id.startswith(prefix):
                        entity_id = entity_id[len(prefix):]
                    if not entity_id:
                        continue
                    amount, currency = extract_metric(group.get("Metrics"), self.config.metric)
                    items.append(CostLineItem(
                        date=bucket,
                        entity_id=entity_id,
                        amount=amount,
                        currency=currency,
                    ))
        return items
