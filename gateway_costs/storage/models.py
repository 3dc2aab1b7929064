"""
Data models for the cost dashboard.

Defines cost records, dimension totals, directory entries, and the query
keys used by the cache.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional


class QueryKind(Enum):
    """Bucketing granularity of a time-series cost query."""
    DAILY = "daily"
    MONTHLY = "monthly"


class Dimension(Enum):
    """Entity dimension used by cost breakdowns and filters."""
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class CostRecord:
    """Cost of one date bucket for one (query kind, filter).

    ``date`` is the ISO-8601 start of the bucket: a day for daily queries,
    the first day of the month (or the range start) for monthly queries.
    """
    date: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class DimensionCost:
    """Total cost attributed to one user or model over a whole range."""
    entity_id: str
    entity_label: Optional[str]
    amount: Decimal
    currency: str

    @property
    def display_name(self) -> str:
        return self.entity_label or self.entity_id


@dataclass(frozen=True)
class CostLineItem:
    """One billing-API group row: one entity in one time bucket."""
    date: str
    entity_id: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class UserInfo:
    """Directory entry of a gateway user."""
    user_id: str
    user_email: str
    created_at: str = ""
    api_key_count: int = 0
    active_api_key_count: int = 0
    inference_profile_count: int = 0


@dataclass(frozen=True)
class ModelInfo:
    """Directory entry of a gateway model."""
    model_id: str
    model_name: str
    is_disabled: bool = False
    protected: bool = False
    user_count: int = 0


@dataclass(frozen=True)
class CostFilter:
    """Optional restriction of a cost query to one user or one model.

    The string form (``filter_id``) is part of the cache key: ``""`` for
    unfiltered queries, ``"user:<id>"`` or ``"model:<id>"`` otherwise.
    """
    dimension: Optional[Dimension] = None
    entity_id: Optional[str] = None

    def __post_init__(self):
        if (self.dimension is None) != (self.entity_id is None):
            raise ValueError("dimension and entity_id must be given together")
        if self.entity_id is not None and not self.entity_id:
            raise ValueError("entity_id cannot be empty")

    @classmethod
    def for_user(cls, user_id: str) -> "CostFilter":
        return cls(Dimension.USER, user_id)

    @classmethod
    def for_model(cls, model_id: str) -> "CostFilter":
        return cls(Dimension.MODEL, model_id)

    @classmethod
    def parse(cls, filter_id: str) -> "CostFilter":
        """Parse a filter id string.

        Raises:
            ValueError: If the prefix is unknown or the id is empty
        """
        if not filter_id:
            return cls()
        prefix, sep, entity_id = filter_id.partition(":")
        if not sep:
            raise ValueError(f"Malformed filter id: {filter_id!r}")
        try:
            dimension = Dimension(prefix)
        except ValueError:
            raise ValueError(f"Unknown filter dimension in {filter_id!r}")
        return cls(dimension, entity_id)

    @property
    def filter_id(self) -> str:
        if self.dimension is None:
            return ""
        return f"{self.dimension.value}:{self.entity_id}"

    @property
    def is_empty(self) -> bool:
        return self.dimension is None
