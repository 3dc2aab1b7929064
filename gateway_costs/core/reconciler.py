"""
Reconciling cost queries.

Answers time-series cost queries by combining the cache of finalized data
with live calls to the billing API for the still-open period, and refills the
cache in the background after a miss.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Sequence, Set

from gateway_costs.billing.base import BillingClient, CostFetcher
from gateway_costs.storage.cache import CostCacheStore
from gateway_costs.storage.models import CostRecord, QueryKind

from .freshness import DateRange, bucket_dates, first_day_of_month, partition

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def complete_buckets_end(query_kind: QueryKind, finalized: DateRange) -> date:
    """First date whose bucket is cut short by the end of ``finalized``.

    A monthly range ending mid-month reports only part of its last month
    under the same bucket date as the whole month, so that bucket must not
    be cached.
    """
    if QueryKind(query_kind) is QueryKind.MONTHLY and finalized.end.day != 1:
        return first_day_of_month(finalized.end)
    return finalized.end


def covers(cached: Sequence[CostRecord], query_kind: QueryKind, date_range: DateRange) -> bool:
    """Decide whether cached records can stand in for the whole range.

    The cache is filled by whole-range fetches, so a first record later than
    the requested start means an earlier fetch covered only a suffix. Every
    expected bucket must also be present, which catches internal gaps left
    by a partially failed write-back.
    """
    if not cached or cached[0].date > date_range.start.isoformat():
        return False
    present = {record.date for record in cached}
    return all(
        bucket.isoformat() in present
        for bucket in bucket_dates(query_kind, date_range)
    )


class ReconcilingQueryService:
    """Serves finalized data from cache and live data from the billing API.

    Queries never raise: cache problems count as misses and billing failures
    turn the affected sub-range into an empty result, logged with enough
    context to diagnose.
    """

    def __init__(
        self,
        billing: BillingClient,
        store: CostCacheStore,
        clock: Callable[[], datetime] = utc_now,
        fetch_timeout: Optional[float] = None,
    ):
        """Initialize the service.

        Args:
            billing: Shared billing API client
            store: Cache of finalized cost records
            clock: Returns the current time; decides the freshness boundary
            fetch_timeout: Seconds before a single billing fetch is abandoned
        """
        self.billing = billing
        self.store = store
        self.clock = clock
        self.fetch_timeout = fetch_timeout
        self._write_backs: Set["asyncio.Task[bool]"] = set()

    async def query(
        self,
        query_kind: QueryKind,
        filter_id: str,
        start: date,
        end: date,
        fetcher: Optional[CostFetcher] = None,
    ) -> List[CostRecord]:
        """Cost per bucket in ``[start, end)``, ordered by date ascending.

        Args:
            query_kind: Daily or monthly buckets
            filter_id: "" for unfiltered, "user:<id>" or "model:<id>"
            start: First date of the range
            end: End of the range (exclusive)
            fetcher: Billing fetch strategy; derived from the billing client
                for (query_kind, filter_id) when omitted

        Returns:
            Records of the finalized sub-range followed by the live sub-range
        """
        query_kind = QueryKind(query_kind)
        if fetcher is None:
            fetcher = self.billing.cost_fetcher(query_kind, filter_id)

        finalized, live = partition(query_kind, start, end, self.clock())
        results: List[CostRecord] = []

        if not finalized.is_empty:
            cached = await self._read_cache(query_kind, filter_id, finalized)
            if covers(cached, query_kind, finalized):
                logger.debug("Cache hit for %s %r %s", query_kind.value, filter_id, finalized)
                # Rows cached by queries starting mid-month sit between the
                # expected monthly buckets.
                expected = {bucket.isoformat() for bucket in bucket_dates(query_kind, finalized)}
                results.extend(r for r in cached if r.date in expected)
            else:
                logger.debug("Cache miss for %s %r %s", query_kind.value, filter_id, finalized)
                fetched = await self._fetch(fetcher, query_kind, filter_id, finalized)
                self._spawn_write_back(query_kind, filter_id, finalized, fetched)
                results.extend(fetched)

        if not live.is_empty:
            results.extend(await self._fetch(fetcher, query_kind, filter_id, live))

        return results

    async def drain(self) -> None:
        """Wait for all pending cache write-backs to finish."""
        while self._write_backs:
            await asyncio.gather(*list(self._write_backs), return_exceptions=True)

    @property
    def pending_write_backs(self) -> int:
        return len(self._write_backs)

    async def _read_cache(
        self,
        query_kind: QueryKind,
        filter_id: str,
        date_range: DateRange,
    ) -> List[CostRecord]:
        try:
            return await asyncio.to_thread(
                self.store.get, query_kind, filter_id, date_range.start, date_range.end
            )
        except Exception:
            logger.warning(
                "Cost cache unavailable for %s %r %s, treating as miss",
                query_kind.value, filter_id, date_range, exc_info=True,
            )
            return []

    async def _fetch(
        self,
        fetcher: CostFetcher,
        query_kind: QueryKind,
        filter_id: str,
        date_range: DateRange,
    ) -> List[CostRecord]:
        call = asyncio.to_thread(fetcher.fetch, date_range.start, date_range.end)
        try:
            if self.fetch_timeout is not None:
                return list(await asyncio.wait_for(call, self.fetch_timeout))
            return list(await call)
        except Exception:
            logger.exception(
                "Billing API call failed for %s %r %s",
                query_kind.value, filter_id, date_range,
            )
            return []

    def _spawn_write_back(
        self,
        query_kind: QueryKind,
        filter_id: str,
        finalized: DateRange,
        records: Sequence[CostRecord],
    ) -> None:
        """Start a detached upsert of freshly fetched finalized records.

        Records on or after the freshness boundary are never persisted, nor
        is a monthly bucket truncated by the end of the range.
        """
        boundary = complete_buckets_end(query_kind, finalized).isoformat()
        finalized_records = [r for r in records if r.date < boundary]
        if not finalized_records:
            return

        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self.store.put, query_kind, filter_id, finalized_records)
        )
        self._write_backs.add(task)
        task.add_done_callback(self._write_back_done)

    def _write_back_done(self, task: "asyncio.Task[bool]") -> None:
        self._write_backs.discard(task)
        if task.cancelled():
            logger.warning("Cost cache write-back cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Cost cache write-back failed", exc_info=exc)
