"""
Aggregation of cost line items into per-entity totals.

The billing API returns one row per entity per time bucket; breakdown
reports need one total per entity over the whole range.
"""

from decimal import Decimal
from typing import Any, Callable, Dict, Hashable, Iterable, List, NamedTuple


class AggregateTotal(NamedTuple):
    """Summed cost for one key."""
    key: Hashable
    amount: Decimal
    currency: str


def aggregate(items: Iterable[Any], key_fn: Callable[[Any], Hashable]) -> List[AggregateTotal]:
    """Sum item amounts per key, largest total first.

    Items need ``amount`` and ``currency`` attributes. The currency of a
    group is the currency of the first item seen for its key; mixing
    currencies under one key is not converted.

    Args:
        items: Cost items, e.g. CostLineItem rows
        key_fn: Function returning the grouping key of an item

    Returns:
        One AggregateTotal per key, ordered by amount descending. The order
        among equal amounts is unspecified.
    """
    amounts: Dict[Hashable, Decimal] = {}
    currencies: Dict[Hashable, str] = {}

    for item in items:
        key = key_fn(item)
        if key not in amounts:
            amounts[key] = Decimal("0")
            currencies[key] = item.currency
        amounts[key] += Decimal(item.amount)

    totals = [
        AggregateTotal(key=key, amount=amount, currency=currencies[key])
        for key, amount in amounts.items()
    ]
    return sorted(totals, key=lambda total: total.amount, reverse=True)
