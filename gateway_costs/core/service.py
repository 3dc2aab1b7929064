"""
Cost service exposed to the reporting surface.

Time-series queries go through the reconciling cache layer. Breakdowns by
user or model are not cached: they call the billing API directly, aggregate
the per-bucket rows, and attach human labels from the identity directory.
"""

import asyncio
import logging
from datetime import date
from typing import Callable, List, Optional, Protocol, Tuple, TypeVar

from gateway_costs.billing.base import BillingClient
from gateway_costs.storage.models import (
    CostFilter,
    CostRecord,
    Dimension,
    DimensionCost,
    ModelInfo,
    QueryKind,
    UserInfo,
)

from .aggregation import aggregate
from .reconciler import ReconcilingQueryService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdentityResolver(Protocol):
    """Maps raw ids to display labels and lists directory entries."""

    def user_email_for(self, user_id: str) -> Optional[str]:
        ...

    def model_name_for(self, model_id: str) -> Optional[str]:
        ...

    def user_id_for_email(self, email: str) -> Optional[str]:
        ...

    def list_users(self) -> List[Tuple[str, str]]:
        ...

    def list_models(self) -> List[Tuple[str, str]]:
        ...

    def user_info(self, user_id: str) -> Optional[UserInfo]:
        ...

    def model_info(self, model_id: str) -> Optional[ModelInfo]:
        ...


class CostService:
    """Entry point for every cost question the dashboard asks."""

    def __init__(
        self,
        reconciler: ReconcilingQueryService,
        directory: IdentityResolver,
        billing: Optional[BillingClient] = None,
    ):
        self.reconciler = reconciler
        self.directory = directory
        self.billing = billing or reconciler.billing

    async def query(self, query_kind: QueryKind, filter_id: str, start: date, end: date) -> List[CostRecord]:
        return await self.reconciler.query(query_kind, filter_id, start, end)

    async def daily_cost(self, start: date, end: date) -> List[CostRecord]:
        return await self.query(QueryKind.DAILY, "", start, end)

    async def monthly_cost(self, start: date, end: date) -> List[CostRecord]:
        return await self.query(QueryKind.MONTHLY, "", start, end)

    async def daily_cost_for_user(self, start: date, end: date, user_id: str) -> List[CostRecord]:
        return await self.query(QueryKind.DAILY, CostFilter.for_user(user_id).filter_id, start, end)

    async def monthly_cost_for_user(self, start: date, end: date, user_id: str) -> List[CostRecord]:
        return await self.query(QueryKind.MONTHLY, CostFilter.for_user(user_id).filter_id, start, end)

    async def daily_cost_for_model(self, start: date, end: date, model_id: str) -> List[CostRecord]:
        return await self.query(QueryKind.DAILY, CostFilter.for_model(model_id).filter_id, start, end)

    async def monthly_cost_for_model(self, start: date, end: date, model_id: str) -> List[CostRecord]:
        return await self.query(QueryKind.MONTHLY, CostFilter.for_model(model_id).filter_id, start, end)

    async def cost_by_user(self, start: date, end: date) -> List[DimensionCost]:
        return await self._breakdown(Dimension.USER, start, end, CostFilter())

    async def cost_by_model(self, start: date, end: date) -> List[DimensionCost]:
        return await self._breakdown(Dimension.MODEL, start, end, CostFilter())

    async def cost_by_model_for_user(self, start: date, end: date, user_id: str) -> List[DimensionCost]:
        return await self._breakdown(Dimension.MODEL, start, end, CostFilter.for_user(user_id))

    async def cost_by_user_for_model(self, start: date, end: date, model_id: str) -> List[DimensionCost]:
        return await self._breakdown(Dimension.USER, start, end, CostFilter.for_model(model_id))

    async def resolve_user(self, user: str) -> str:
        """Accept a user id or an email address and return the user id.

        Emails that cannot be resolved are returned unchanged.
        """
        if "@" not in user:
            return user
        user_id = await self._lookup(self.directory.user_id_for_email, user)
        return user_id or user

    async def list_users(self) -> List[Tuple[str, str]]:
        """Known (user_id, email) pairs; empty if the directory is unavailable."""
        return await self._lookup(self.directory.list_users) or []

    async def list_models(self) -> List[Tuple[str, str]]:
        """Known (model_id, name) pairs; empty if the directory is unavailable."""
        return await self._lookup(self.directory.list_models) or []

    async def user_info(self, user_id: str) -> UserInfo:
        """Directory entry of a user.

        Users missing from the directory get a minimal entry with the email
        (or "unknown") and zero counts.
        """
        info = await self._lookup(self.directory.user_info, user_id)
        if info is not None:
            return info
        email = await self._lookup(self.directory.user_email_for, user_id)
        return UserInfo(user_id=user_id, user_email=email or "unknown")

    async def model_info(self, model_id: str) -> ModelInfo:
        """Directory entry of a model, minimal when the directory has none."""
        info = await self._lookup(self.directory.model_info, model_id)
        if info is not None:
            return info
        name = await self._lookup(self.directory.model_name_for, model_id)
        return ModelInfo(model_id=model_id, model_name=name or "unknown")

    async def drain(self) -> None:
        await self.reconciler.drain()

    async def _breakdown(
        self,
        dimension: Dimension,
        start: date,
        end: date,
        cost_filter: CostFilter,
    ) -> List[DimensionCost]:
        """Aggregate per-bucket billing rows into one labelled total per entity."""
        try:
            items = await asyncio.to_thread(
                self.billing.fetch_line_items, dimension, start, end, cost_filter.filter_id
            )
        except Exception:
            logger.exception(
                "Billing API call failed for %s breakdown %r [%s, %s)",
                dimension.value, cost_filter.filter_id, start.isoformat(), end.isoformat(),
            )
            return []

        if dimension is Dimension.USER:
            label_for = self.directory.user_email_for
        else:
            label_for = self.directory.model_name_for

        costs = []
        for total in aggregate(items, lambda item: item.entity_id):
            costs.append(DimensionCost(
                entity_id=total.key,
                entity_label=await self._lookup(label_for, total.key),
                amount=total.amount,
                currency=total.currency,
            ))
        return costs

    async def _lookup(self, resolve: Callable[..., Optional[T]], *args: str) -> Optional[T]:
        try:
            return await asyncio.to_thread(resolve, *args)
        except Exception:
            logger.warning("Identity lookup failed for %r", args, exc_info=True)
            return None
