"""
Cache of finalized cost data.

Stores one amount per (query kind, filter id, date). Only data from closed
billing periods is written here, so rows never go stale and are never deleted.
"""

import logging
import sqlite3
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Sequence, Union

from .db import DEFAULT_CACHE_PATH, get_connection
from .models import CostRecord, QueryKind

logger = logging.getLogger(__name__)

DateLike = Union[date, str]

_UPSERT_SQL = """
    INSERT INTO cost_cache (query_kind, filter_id, date, amount, currency, updated_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT (query_kind, filter_id, date)
    DO UPDATE SET amount = excluded.amount,
                  currency = excluded.currency,
                  updated_at = excluded.updated_at
"""


def _iso(value: DateLike) -> str:
    return value.isoformat() if isinstance(value, date) else value


class CostCacheStore:
    """SQLite-backed store of previously fetched cost records.

    Every call opens its own connection, so one store instance can be shared
    by worker threads. Reads and writes never raise: the billing API is the
    source of truth and the cache is only an optimisation.
    """

    def __init__(self, db_path: str = DEFAULT_CACHE_PATH, timeout: float = 30.0):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds a writer waits for a locked database
        """
        self.db_path = db_path
        self.timeout = timeout

    def initialize_schema(self) -> None:
        """Create the cost_cache table if it doesn't exist.

        Amounts are stored as decimal text so that values round-trip exactly.
        """
        conn = get_connection(self.db_path, self.timeout)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cost_cache (
                    query_kind TEXT NOT NULL,
                    filter_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (query_kind, filter_id, date)
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get(
        self,
        query_kind: QueryKind,
        filter_id: str,
        start: DateLike,
        end: DateLike,
    ) -> List[CostRecord]:
        """Read cached records with ``start <= date < end``.

        Args:
            query_kind: Granularity of the cached series
            filter_id: "" for unfiltered, "user:<id>" or "model:<id>"
            start: First date of the range (inclusive)
            end: End of the range (exclusive)

        Returns:
            Records ordered by date ascending; empty if nothing is cached
            or the cache could not be read
        """
        try:
            conn = get_connection(self.db_path, self.timeout)
            try:
                cursor = conn.execute(
                    """
                    SELECT date, amount, currency FROM cost_cache
                    WHERE query_kind = ? AND filter_id = ?
                      AND date >= ? AND date < ?
                    ORDER BY date
                    """,
                    (QueryKind(query_kind).value, filter_id, _iso(start), _iso(end)),
                )
                return [
                    CostRecord(date=row[0], amount=Decimal(row[1]), currency=row[2])
                    for row in cursor.fetchall()
                ]
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(
                "Cost cache read failed for %s %r [%s, %s), treating as miss: %s",
                QueryKind(query_kind).value, filter_id, _iso(start), _iso(end), e,
            )
            return []

    def put(self, query_kind: QueryKind, filter_id: str, records: Sequence[CostRecord]) -> bool:
        """Upsert records atomically; the last write wins on amount and currency.

        All rows of one call are written in a single transaction. Concurrent
        writers for the same key are safe because each row is a single
        insert-or-update statement.

        Args:
            query_kind: Granularity of the series
            filter_id: Filter id the records belong to
            records: Records to store

        Returns:
            True if the rows were written, False if the write was dropped
        """
        if not records:
            return True

        kind = QueryKind(query_kind).value
        updated_at = datetime.now(timezone.utc).isoformat()
        rows = [
            (kind, filter_id, r.date, str(r.amount), r.currency, updated_at)
            for r in records
        ]
        try:
            conn = get_connection(self.db_path, self.timeout)
            try:
                with conn:
                    conn.executemany(_UPSERT_SQL, rows)
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(
                "Cost cache write of %d rows for %s %r dropped: %s",
                len(rows), kind, filter_id, e,
            )
            return False

        logger.debug("Cached %d %s rows for %r", len(rows), kind, filter_id)
        return True
