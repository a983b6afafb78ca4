"""
Tests for core.sync_service module.
"""
import pytest
from unittest.mock import AsyncMock, patch, call

from core.exceptions import ExchangeAPIError, ExchangeConnectionError, ExchangeDataError
from core.models import StockDetail
from core.sync_service import SyncResult, SyncService


def _detail_for(stocks):
    by_ticker = {s.ticker: StockDetail(stock=s) for s in stocks}

    async def fetch(ticker):
        return by_ticker[ticker]
    return fetch


class TestRefreshValues:
    """Lightweight hourly job."""

    @pytest.mark.asyncio
    async def test_saves_every_stock(self, mock_store, mock_client, sample_stocks):
        mock_client.list_stocks.return_value = sample_stocks
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_values()

        assert mock_client.list_stocks.await_count == 1
        assert mock_store.save_stock.await_args_list == [call(s) for s in sample_stocks]
        assert (result.total, result.succeeded, result.failed) == (3, 3, 0)
        assert result.error is None

    @pytest.mark.asyncio
    async def test_store_failure_isolated(self, mock_store, mock_client, sample_stocks):
        """A failing write skips that stock only."""
        mock_client.list_stocks.return_value = sample_stocks
        mock_store.save_stock.side_effect = [None, RuntimeError("disk full"), None]
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_values()

        assert mock_store.save_stock.await_count == 3
        assert result.succeeded == 2
        assert result.failed == 1
        assert result.failed_tickers == ["DEF"]

    @pytest.mark.asyncio
    async def test_list_failure_reported(self, mock_store, mock_client):
        """A failed listing ends the run without raising."""
        mock_client.list_stocks.side_effect = ExchangeConnectionError("Request timeout after 30s")
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_values()

        assert result.total == 0
        assert "timeout" in result.error
        mock_store.save_stock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_listing(self, mock_store, mock_client):
        service = SyncService(mock_store, mock_client, detail_delay=0)
        result = await service.refresh_values()
        assert result == SyncResult(job="refresh_values", duration_ms=result.duration_ms)


class TestRefreshDetails:
    """Heavyweight daily job."""

    @pytest.mark.asyncio
    async def test_saves_every_detail(self, mock_store, mock_client, sample_stocks):
        mock_client.list_stocks.return_value = sample_stocks
        mock_client.fetch_stock_detail.side_effect = _detail_for(sample_stocks)
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_details()

        assert [c.args[0] for c in mock_client.fetch_stock_detail.await_args_list] == ["ABC", "DEF", "GHI"]
        assert mock_store.save_stock_detail.await_count == 3
        assert result.succeeded == result.total == 3

    @pytest.mark.asyncio
    async def test_upstream_failure_isolated(self, mock_store, mock_client, sample_stocks):
        """One failing detail fetch does not stop later stocks."""
        fetch = _detail_for(sample_stocks)

        async def flaky(ticker):
            if ticker == "ABC":
                raise ExchangeAPIError("API returned 500", status_code=500)
            return await fetch(ticker)

        mock_client.list_stocks.return_value = sample_stocks
        mock_client.fetch_stock_detail.side_effect = flaky
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_details()

        assert result.succeeded < result.total
        assert result.succeeded == 2
        assert result.failed_tickers == ["ABC"]
        saved = [c.args[0].ticker for c in mock_store.save_stock_detail.await_args_list]
        assert saved == ["DEF", "GHI"]

    @pytest.mark.asyncio
    async def test_bad_payload_isolated(self, mock_store, mock_client, sample_stocks):
        mock_client.list_stocks.return_value = sample_stocks[:2]
        mock_client.fetch_stock_detail.side_effect = [
            ExchangeDataError("Missing required field 'ticker'"),
            StockDetail(stock=sample_stocks[1]),
        ]
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_details()

        assert (result.succeeded, result.failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_throttle_between_stocks(self, mock_store, mock_client, sample_stocks):
        """The delay is applied between stocks, not before the first."""
        mock_client.list_stocks.return_value = sample_stocks
        mock_client.fetch_stock_detail.side_effect = _detail_for(sample_stocks)
        service = SyncService(mock_store, mock_client, detail_delay=0.5)

        with patch("core.sync_service.asyncio.sleep", new=AsyncMock()) as sleep:
            await service.refresh_details()

        assert sleep.await_args_list == [call(0.5), call(0.5)]

    @pytest.mark.asyncio
    async def test_list_failure_reported(self, mock_store, mock_client):
        mock_client.list_stocks.side_effect = ExchangeAPIError("API returned 502", status_code=502)
        service = SyncService(mock_store, mock_client, detail_delay=0)

        result = await service.refresh_details()

        assert result.job == "refresh_details"
        assert result.total == 0
        assert result.error == "API returned 502"
        mock_client.fetch_stock_detail.assert_not_awaited()
