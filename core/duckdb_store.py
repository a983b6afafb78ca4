"""
DuckDB time-series store for exchange history.

Holds three tables:
- stocks:        one "current state" row per stock (upserted on every sync)
- price_history: append-only share price observations, unique per (stock, instant)
- shareholders:  append-only holder snapshots, unique per (stock, account, instant)

All ``recorded_at`` values are naive wall-clock timestamps in the history
timezone, so hour/day/week/month truncation happens on civil time.
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import duckdb

from core.clock import wall_clock, wall_clock_now
from core.config import config
from core.exceptions import QueryTimeoutError
from core.models import Bucket, PricePoint, Shareholder, ShareholderSnapshot, Stock, StockDetail

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT = config.store.query_timeout

T = TypeVar("T")

_STOCK_COLUMNS = (
    "id, ticker, company_name, logo, outstanding_shares, frozen, delisted, "
    "stock_type, book_value, dividend_per_share, dividend_period, "
    "created_at, updated_at, latest_share_price, first_recorded_at, last_updated_at"
)


def _utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Upstream created/updated timestamps are kept as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _stock_row_to_dict(row: tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "ticker": row[1],
        "company_name": row[2],
        "logo": row[3],
        "outstanding_shares": row[4],
        "frozen": row[5],
        "delisted": row[6],
        "stock_type": row[7],
        "book_value": row[8],
        "dividend_per_share": float(row[9]) if row[9] is not None else None,
        "dividend_period": row[10],
        "created_at": row[11],
        "updated_at": row[12],
        "share_price": float(row[13]),
        "first_recorded_at": row[14],
        "last_updated_at": row[15],
    }


class DuckDBStore:
    """
    Async-compatible DuckDB store for the exchange time series.

    Features:
    - Persistent storage (survives restarts)
    - Idempotent writes: upsert for stocks, dedup-append for history rows
    - Bucketed range queries evaluated inside DuckDB
    - Every statement runs on one worker thread, off the event loop
    """

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path) if db_path else config.store.db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()  # Serializes all database access
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    async def connect(self) -> None:
        """Initialize database connection, schema, and thread pool."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                self._connection = duckdb.connect(str(self.db_path))
                self._init_schema()
                self._executor = ThreadPoolExecutor(
                    max_workers=1,  # DuckDB connection requires serialized access
                    thread_name_prefix="duckdb"
                )
                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection and thread pool."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None

            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @asynccontextmanager
    async def connection(self):
        """Yield the connection while holding the store lock."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    async def _fetch_all(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> List[tuple]:
        """
        Execute query and fetch all results with timeout.

        Raises:
            QueryTimeoutError: If query exceeds timeout
        """
        return await self._run(
            lambda conn: conn.execute(query, params or []).fetchall(),
            description=query,
            timeout=timeout,
        )

    async def _run(
        self,
        work: Callable[[duckdb.DuckDBPyConnection], T],
        description: str,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> T:
        """
        Run ``work(conn)`` on the DuckDB worker thread while holding the store lock.

        Raises:
            QueryTimeoutError: If ``work`` does not finish within ``timeout``
        """
        async with self.connection() as conn:
            self._total_queries += 1
            loop = asyncio.get_running_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(self._executor, work, conn),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                raise QueryTimeoutError(description, timeout)

    @staticmethod
    def _in_transaction(conn, body: Callable[[], T]) -> T:
        conn.execute("BEGIN TRANSACTION")
        try:
            outcome = body()
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        return outcome

    async def _fetch_one(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> Optional[tuple]:
        rows = await self._fetch_all(query, params, timeout)
        return rows[0] if rows else None

    def _init_schema(self) -> None:
        """Create database schema if not exists."""
        # ticker is deliberately not declared UNIQUE: DuckDB cannot upsert
        # into columns referenced by an index. Uniqueness is enforced upstream.
        self._connection.execute("""
        CREATE TABLE IF NOT EXISTS stocks (
            id INTEGER PRIMARY KEY,
            ticker VARCHAR NOT NULL,
            company_name VARCHAR NOT NULL,
            logo VARCHAR,
            outstanding_shares BIGINT NOT NULL,
            frozen BOOLEAN NOT NULL DEFAULT FALSE,
            delisted BOOLEAN NOT NULL DEFAULT FALSE,
            stock_type VARCHAR NOT NULL,
            book_value BIGINT,
            dividend_per_share DECIMAL(18, 4),
            dividend_period VARCHAR,
            created_at TIMESTAMP,           -- upstream, UTC
            updated_at TIMESTAMP,           -- upstream, UTC
            latest_share_price DECIMAL(18, 4) NOT NULL,
            first_recorded_at TIMESTAMP NOT NULL,  -- local wall clock
            last_updated_at TIMESTAMP NOT NULL     -- local wall clock
        );

        CREATE TABLE IF NOT EXISTS price_history (
            stock_id INTEGER NOT NULL,
            ticker VARCHAR NOT NULL,
            share_price DECIMAL(18, 4) NOT NULL,
            recorded_at TIMESTAMP NOT NULL,
            PRIMARY KEY (stock_id, recorded_at)
        );

        CREATE TABLE IF NOT EXISTS shareholders (
            stock_id INTEGER NOT NULL,
            ticker VARCHAR NOT NULL,
            username VARCHAR NOT NULL,
            account_id INTEGER NOT NULL,
            shares BIGINT NOT NULL,
            recorded_at TIMESTAMP NOT NULL,
            PRIMARY KEY (stock_id, account_id, recorded_at)
        );
        """)

    # ─── Writes ──────────────────────────────────────────────────────────────

    @staticmethod
    def _upsert_stock_row(conn, stock: Stock, at: datetime) -> None:
        conn.execute(f"""
            INSERT INTO stocks ({_STOCK_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                ticker = excluded.ticker,
                company_name = excluded.company_name,
                logo = excluded.logo,
                outstanding_shares = excluded.outstanding_shares,
                frozen = excluded.frozen,
                delisted = excluded.delisted,
                stock_type = excluded.stock_type,
                book_value = excluded.book_value,
                dividend_per_share = excluded.dividend_per_share,
                dividend_period = excluded.dividend_period,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at,
                latest_share_price = excluded.latest_share_price,
                last_updated_at = excluded.last_updated_at
        """, [
            stock.id,
            stock.ticker,
            stock.company_name,
            stock.logo,
            stock.outstanding_shares,
            stock.frozen,
            stock.delisted,
            stock.stock_type,
            stock.book_value,
            stock.dividend_per_share,
            stock.dividend_period,
            _utc_naive(stock.created_at),
            _utc_naive(stock.updated_at),
            stock.share_price,
            at,
            at,
        ])

    @staticmethod
    def _insert_price_row(conn, stock_id: int, ticker: str, price: float, at: datetime) -> bool:
        result = conn.execute("""
            INSERT INTO price_history (stock_id, ticker, share_price, recorded_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (stock_id, recorded_at) DO NOTHING
        """, [stock_id, ticker, price, at]).fetchone()
        return bool(result and result[0])

    @staticmethod
    def _insert_shareholder_row(
        conn, stock_id: int, ticker: str, holder: Shareholder, at: datetime
    ) -> bool:
        result = conn.execute("""
            INSERT INTO shareholders (stock_id, ticker, username, account_id, shares, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (stock_id, account_id, recorded_at) DO NOTHING
        """, [stock_id, ticker, holder.username, holder.account_id, holder.shares, at]).fetchone()
        return bool(result and result[0])

    async def upsert_stock(self, stock: Stock, at: Optional[datetime] = None) -> None:
        """Insert the stock if its id is new, otherwise update every mutable field."""
        at = wall_clock(at) if at else wall_clock_now()
        await self._run(
            lambda conn: self._upsert_stock_row(conn, stock, at),
            description=f"upsert stock {stock.ticker}",
        )

    async def append_price(
        self,
        stock_id: int,
        ticker: str,
        price: float,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Append one price observation.

        A row with the same (stock_id, recorded_at) is left untouched and the
        write is discarded.

        Returns:
            True if a new row was written
        """
        at = wall_clock(at) if at else wall_clock_now()
        return await self._run(
            lambda conn: self._insert_price_row(conn, stock_id, ticker, price, at),
            description=f"append price {ticker}",
        )

    async def append_shareholder_snapshot(
        self,
        stock_id: int,
        ticker: str,
        holder: Shareholder,
        at: Optional[datetime] = None,
    ) -> bool:
        """Append one holder snapshot, deduplicated on (stock_id, account_id, recorded_at)."""
        at = wall_clock(at) if at else wall_clock_now()
        return await self._run(
            lambda conn: self._insert_shareholder_row(conn, stock_id, ticker, holder, at),
            description=f"append shareholder {ticker}/{holder.account_id}",
        )

    async def save_stock(self, stock: Stock, at: Optional[datetime] = None) -> None:
        """Upsert a stock and record its current price, in one transaction."""
        at = wall_clock(at) if at else wall_clock_now()

        def write(conn) -> None:
            self._upsert_stock_row(conn, stock, at)
            self._insert_price_row(conn, stock.id, stock.ticker, stock.share_price, at)

        await self._run(
            lambda conn: self._in_transaction(conn, lambda: write(conn)),
            description=f"save stock {stock.ticker}",
        )

    async def save_stock_detail(self, detail: StockDetail, at: Optional[datetime] = None) -> int:
        """
        Upsert a stock, record its price and one snapshot per shareholder.

        All rows share the same ``recorded_at``.

        Returns:
            Number of shareholder rows written
        """
        at = wall_clock(at) if at else wall_clock_now()
        stock = detail.stock

        def write(conn) -> int:
            self._upsert_stock_row(conn, stock, at)
            self._insert_price_row(conn, stock.id, stock.ticker, stock.share_price, at)
            return sum(
                self._insert_shareholder_row(conn, stock.id, stock.ticker, holder, at)
                for holder in detail.shareholders
            )

        return await self._run(
            lambda conn: self._in_transaction(conn, lambda: write(conn)),
            description=f"save stock detail {stock.ticker}",
        )

    # ─── Reads ───────────────────────────────────────────────────────────────

    async def get_latest_observation_time(self) -> Optional[datetime]:
        """Wall-clock time of the newest price observation, or None if empty."""
        row = await self._fetch_one("SELECT MAX(recorded_at) FROM price_history")
        return row[0] if row and row[0] else None

    async def query_bucketed(
        self,
        ticker: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        bucket: Bucket = Bucket.HOUR,
    ) -> List[PricePoint]:
        """
        Price history for a ticker reduced to one row per bucket, newest first.

        The inclusive [start, end] filter is applied to raw observations before
        bucketing. Within a bucket the earliest observation's price represents
        the bucket. ``Bucket.RAW`` returns every observation unchanged.

        Returns:
            List of PricePoint; empty for an unknown ticker
        """
        bucket = Bucket(bucket)
        filters = ["s.ticker = ?"]
        params: list = [ticker]
        if start is not None:
            filters.append("p.recorded_at >= ?")
            params.append(start)
        if end is not None:
            filters.append("p.recorded_at <= ?")
            params.append(end)
        where = " AND ".join(filters)

        if bucket is Bucket.RAW:
            query = f"""
                SELECT p.recorded_at AS ts, p.share_price AS price
                FROM price_history p
                JOIN stocks s ON p.stock_id = s.id
                WHERE {where}
                ORDER BY ts DESC
            """
        else:
            # bucket.value is one of the enum members, never user text
            query = f"""
                SELECT
                    CAST(date_trunc('{bucket.value}', p.recorded_at) AS TIMESTAMP) AS ts,
                    arg_min(p.share_price, p.recorded_at) AS price
                FROM price_history p
                JOIN stocks s ON p.stock_id = s.id
                WHERE {where}
                GROUP BY ts
                ORDER BY ts DESC
            """

        rows = await self._fetch_all(query, params)
        return [PricePoint(timestamp=row[0], share_price=float(row[1])) for row in rows]

    async def query_shareholders(
        self,
        ticker: str,
        account_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ShareholderSnapshot]:
        """Shareholder snapshots for a ticker, newest first."""
        filters = ["s.ticker = ?"]
        params: list = [ticker]
        if account_id is not None:
            filters.append("h.account_id = ?")
            params.append(account_id)
        if start is not None:
            filters.append("h.recorded_at >= ?")
            params.append(start)
        if end is not None:
            filters.append("h.recorded_at <= ?")
            params.append(end)

        rows = await self._fetch_all(f"""
            SELECT h.stock_id, h.ticker, h.account_id, h.username, h.shares, h.recorded_at
            FROM shareholders h
            JOIN stocks s ON h.stock_id = s.id
            WHERE {" AND ".join(filters)}
            ORDER BY h.recorded_at DESC, h.shares DESC, h.account_id
        """, params)
        return [
            ShareholderSnapshot(
                stock_id=row[0],
                ticker=row[1],
                account_id=row[2],
                username=row[3],
                shares=row[4],
                timestamp=row[5],
            )
            for row in rows
        ]

    async def get_all_stocks(self) -> List[Dict[str, Any]]:
        """All stocks ordered by ticker."""
        rows = await self._fetch_all(f"SELECT {_STOCK_COLUMNS} FROM stocks ORDER BY ticker")
        return [_stock_row_to_dict(row) for row in rows]

    async def get_stock_by_ticker(self, ticker: str) -> Optional[Dict[str, Any]]:
        """One stock by ticker, or None."""
        row = await self._fetch_one(
            f"SELECT {_STOCK_COLUMNS} FROM stocks WHERE ticker = ? ORDER BY id LIMIT 1",
            [ticker],
        )
        return _stock_row_to_dict(row) if row else None

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts, history range and file size for health reporting."""
        row = await self._fetch_one("""
            SELECT
                (SELECT COUNT(*) FROM stocks),
                (SELECT COUNT(*) FROM price_history),
                (SELECT COUNT(*) FROM shareholders),
                (SELECT MIN(recorded_at) FROM price_history),
                (SELECT MAX(recorded_at) FROM price_history)
        """)
        stocks, prices, holders, first, last = row
        return {
            "stocks": stocks,
            "price_points": prices,
            "shareholder_rows": holders,
            "history_range": {
                "min": first.isoformat() if first else None,
                "max": last.isoformat() if last else None,
            },
            "db_size_mb": round(self.db_path.stat().st_size / 1024 / 1024, 2) if self.db_path.exists() else 0,
        }

    def get_connection_info(self) -> Dict[str, Any]:
        """Get connection info for monitoring."""
        return {
            "status": "active" if self._connection else "not_initialized",
            "total_queries": self._total_queries,
            "db_path": str(self.db_path),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[DuckDBStore] = None


async def get_store() -> DuckDBStore:
    """Get the connected singleton store instance."""
    global _store_instance
    if _store_instance is None:
        _store_instance = DuckDBStore()
    if _store_instance._connection is None:
        await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
