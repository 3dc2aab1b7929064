"""
Freshness partitioning of cost query ranges.

Billing data for a closed period never changes, so it can be cached. Data for
the current day (daily queries) or current month (monthly queries) is still
being revised by the provider and must always be fetched live.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, List, Tuple, Union

from gateway_costs.storage.models import QueryKind


@dataclass(frozen=True)
class DateRange:
    """Half-open date range ``[start, end)``."""
    start: date
    end: date

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def days(self) -> Iterator[date]:
        """Iterate over every day in the range."""
        current = self.start
        while current < self.end:
            yield current
            current += timedelta(days=1)

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


def first_day_of_month(day: date) -> date:
    return day.replace(day=1)


def first_day_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def freshness_cutoff(granularity: QueryKind, now: Union[date, datetime]) -> date:
    """Compute the freshness boundary.

    Dates strictly before the boundary are finalized; dates on or after it
    are live.

    Args:
        granularity: Query kind the boundary applies to
        now: Current time (a datetime is truncated to its date)

    Returns:
        Today for daily queries, the first day of this month for monthly ones
    """
    today = now.date() if isinstance(now, datetime) else now
    if QueryKind(granularity) is QueryKind.MONTHLY:
        return first_day_of_month(today)
    return today


def partition(
    granularity: QueryKind,
    start: date,
    end: date,
    now: Union[date, datetime],
) -> Tuple[DateRange, DateRange]:
    """Split ``[start, end)`` into its finalized and live sub-ranges.

    Args:
        granularity: Query kind (daily or monthly)
        start: First requested date
        end: End of the requested range (exclusive)
        now: Current time

    Returns:
        Tuple of (finalized_range, live_range); either may be empty
    """
    cutoff = freshness_cutoff(granularity, now)
    cache_end = min(cutoff, end)
    finalized = DateRange(start, cache_end)
    live = DateRange(max(cache_end, start), end)
    return finalized, live


def bucket_dates(granularity: QueryKind, date_range: DateRange) -> List[date]:
    """List the bucket start dates the billing API reports for a range.

    Daily ranges have one bucket per day. Monthly ranges start with a bucket
    at the range start (possibly mid-month) followed by one bucket on the
    first day of every later month.
    """
    if date_range.is_empty:
        return []
    if QueryKind(granularity) is QueryKind.DAILY:
        return list(date_range.days())

    buckets = [date_range.start]
    current = first_day_of_next_month(date_range.start)
    while current < date_range.end:
        buckets.append(current)
        current = first_day_of_next_month(current)
    return buckets
