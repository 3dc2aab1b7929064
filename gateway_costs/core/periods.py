"""
Reporting periods and page slicing for cost reports.
"""

from datetime import date, datetime, timedelta
from typing import List, Sequence, Tuple, TypeVar

from .freshness import first_day_of_month, first_day_of_next_month

T = TypeVar("T")

PAGE_SIZE = 50
DEFAULT_PERIOD = "30d"

# Rolling periods: number of days back from today, inclusive of today.
_ROLLING_DAYS = {
    "7d": 7,
    "30d": 30,
    "3m": 91,
    "6m": 181,
    "12m": 366,
}

PERIODS = ("7d", "30d", "month", "last_month", "3m", "6m", "12m")


def resolve_period(period: str, today: date, whole_months: bool = False) -> Tuple[date, date]:
    """Turn a named period into a half-open ``[start, end)`` range.

    Rolling periods and "month" end tomorrow so that today's live spend is
    included; "last_month" covers the whole previous calendar month.

    Args:
        period: One of PERIODS
        today: Current date
        whole_months: Move a rolling start back to the first of its month,
            so that monthly reports begin with a complete bucket

    Raises:
        ValueError: If the period name is unknown
    """
    tomorrow = today + timedelta(days=1)
    if period in _ROLLING_DAYS:
        start = today - timedelta(days=_ROLLING_DAYS[period] - 1)
        if whole_months:
            start = first_day_of_month(start)
        return start, tomorrow
    if period == "month":
        return first_day_of_month(today), tomorrow
    if period == "last_month":
        first_of_current = first_day_of_month(today)
        return first_day_of_month(first_of_current - timedelta(days=1)), first_of_current
    raise ValueError(f"Unknown period {period!r}, expected one of: {', '.join(PERIODS)}")


def month_to_range(month: str) -> Tuple[date, date]:
    """Range covering one calendar month given as "YYYY-MM".

    Raises:
        ValueError: If the month is malformed
    """
    start = datetime.strptime(f"{month}-01", "%Y-%m-%d").date()
    return start, first_day_of_next_month(start)


def paginate(items: Sequence[T], page: int, page_size: int = PAGE_SIZE) -> Tuple[List[T], int]:
    """Slice one page out of a result set.

    Args:
        items: Full result set
        page: Requested 1-based page, clamped into the valid range
        page_size: Items per page

    Returns:
        Tuple of (items on the page, effective page number)
    """
    total = len(items)
    if total == 0:
        return list(items), 1
    page = max(1, min(page, total_pages(items, page_size)))
    start = (page - 1) * page_size
    return list(items[start:start + page_size]), page


def total_pages(items: Sequence[T], page_size: int = PAGE_SIZE) -> int:
    return max(1, -(-len(items) // page_size))
