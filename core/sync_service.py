"""
Sync jobs that copy the upstream exchange into the DuckDB history.

Two jobs share one collaborator pair (store + client):
- refresh_values:  list every stock once, record its current price (hourly)
- refresh_details: list every stock, fetch each detail, record price and
                   shareholders (daily, throttled between requests)

A failing stock is logged and counted; it never aborts the rest of the run.
"""
import asyncio
import time
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List

from core.config import config
from core.duckdb_store import get_store, DuckDBStore
from core.exceptions import ExchangeError, ExchangeAPIError
from core.exchange_client import get_client, ExchangeClient
from core.models import Stock
from core.observability import get_logger, correlation_context, metrics

logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync run."""
    job: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_tickers: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncService:
    """
    Service for syncing exchange data to DuckDB.

    Both jobs are idempotent within one ``recorded_at``: the store discards
    duplicate rows, so a re-run in the same instant writes nothing new.
    """

    def __init__(
        self,
        store: DuckDBStore,
        client: ExchangeClient,
        detail_delay: Optional[float] = None,
    ):
        self.store = store
        self.client = client
        self.detail_delay = (
            config.exchange.detail_request_delay if detail_delay is None else detail_delay
        )

    async def _list_stocks(self, result: SyncResult) -> Optional[List[Stock]]:
        """List stocks, recording a list failure on ``result`` instead of raising."""
        try:
            return await self.client.list_stocks()
        except ExchangeError as e:
            result.error = str(e)
            metrics.record_error(type(e).__name__)
            logger.error(f"{result.job}: failed to list stocks: {e}", extra={"job": result.job})
            return None

    def _record_failure(self, result: SyncResult, ticker: str, error: Exception) -> None:
        result.failed += 1
        result.failed_tickers.append(ticker)
        metrics.record_error(type(error).__name__)

        if isinstance(error, ExchangeAPIError):
            logger.warning(
                f"{result.job}: {ticker} skipped (status={error.status_code}): {error}",
                extra={"job": result.job, "ticker": ticker},
            )
        else:
            logger.warning(
                f"{result.job}: {ticker} skipped: {error}",
                extra={"job": result.job, "ticker": ticker},
            )

    def _finish(self, result: SyncResult, started: float) -> SyncResult:
        result.duration_ms = round((time.perf_counter() - started) * 1000, 2)
        metrics.record_timing(result.job, result.duration_ms)
        metrics.record_sync(result.job, result.succeeded, result.failed)
        logger.info(
            f"{result.job} complete: {result.succeeded}/{result.total} stocks"
            + (f", {result.failed} failed" if result.failed else ""),
            extra=result.to_dict(),
        )
        return result

    async def refresh_values(self) -> SyncResult:
        """
        Record the current share price of every listed stock.

        Returns:
            SyncResult with per-stock counts
        """
        result = SyncResult(job="refresh_values")
        started = time.perf_counter()

        with correlation_context():
            logger.info("Starting price refresh")

            stocks = await self._list_stocks(result)
            if stocks is None:
                return self._finish(result, started)

            result.total = len(stocks)
            for stock in stocks:
                try:
                    await self.store.save_stock(stock)
                    result.succeeded += 1
                except Exception as e:
                    self._record_failure(result, stock.ticker, e)

            return self._finish(result, started)

    async def refresh_details(self) -> SyncResult:
        """
        Record price and shareholders for every listed stock.

        Requests are spaced by ``detail_delay`` seconds to stay polite to the
        upstream rate limit.

        Returns:
            SyncResult with per-stock counts
        """
        result = SyncResult(job="refresh_details")
        started = time.perf_counter()

        with correlation_context():
            logger.info("Starting detail refresh")

            stocks = await self._list_stocks(result)
            if stocks is None:
                return self._finish(result, started)

            result.total = len(stocks)
            for index, stock in enumerate(stocks):
                if index and self.detail_delay > 0:
                    await asyncio.sleep(self.detail_delay)
                try:
                    detail = await self.client.fetch_stock_detail(stock.ticker)
                    holders = await self.store.save_stock_detail(detail)
                    result.succeeded += 1
                    logger.debug(f"{stock.ticker}: {holders} shareholders recorded")
                except Exception as e:
                    self._record_failure(result, stock.ticker, e)

            return self._finish(result, started)


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_sync_service: Optional[SyncService] = None


async def get_sync_service() -> SyncService:
    """Get singleton sync service instance."""
    global _sync_service
    if _sync_service is None:
        store = await get_store()
        _sync_service = SyncService(store, get_client())
    return _sync_service
