"""
Tests for core.exchange_client module.
"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from core.exceptions import ExchangeAPIError, ExchangeConnectionError, ExchangeDataError
from core.exchange_client import ExchangeClient
from core.observability import correlation_context
from core.resilience import RetryConfig

NO_WAIT = RetryConfig(max_attempts=3, base_delay=0.0, jitter=0.0)


def _response(status_code: int = 200, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


class TestExchangeClient:
    """Tests for ExchangeClient class."""

    def test_init(self):
        """Trailing slash is dropped from the base URL."""
        client = ExchangeClient(base_url="https://exchange.test/api/", timeout=5)
        assert client.base_url == "https://exchange.test/api"
        assert client.timeout == 5

    def test_headers(self):
        headers = ExchangeClient(base_url="https://exchange.test").headers
        assert headers["Accept"] == "application/json"
        assert headers["User-Agent"].startswith("exchange-history/")

    @pytest.mark.asyncio
    async def test_context_manager(self):
        client = ExchangeClient(base_url="https://exchange.test")
        async with client:
            assert client._client is not None
        assert client._client is None

    @pytest.mark.asyncio
    async def test_list_stocks(self, sample_stock_payload):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=_response(payload={"stocks": [sample_stock_payload]}))
            client._client = mock_client

            stocks = await client.list_stocks()

        assert [s.ticker for s in stocks] == ["ABC"]
        assert stocks[0].share_price == 10.5
        assert mock_client.get.call_args.args[0] == "/stocks"

    @pytest.mark.asyncio
    async def test_list_stocks_bad_shape(self):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=_response(payload=[{"id": 1}]))
            client._client = mock_client

            with pytest.raises(ExchangeDataError, match="/stocks"):
                await client.list_stocks()

    @pytest.mark.asyncio
    async def test_fetch_stock_detail(self, sample_detail_payload):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=_response(payload=sample_detail_payload))
            client._client = mock_client

            detail = await client.fetch_stock_detail("ABC")

        assert detail.ticker == "ABC"
        assert len(detail.shareholders) == 2
        assert mock_client.get.call_args.args[0] == "/stock/ABC"

    @pytest.mark.asyncio
    async def test_ticker_is_quoted(self, sample_detail_payload):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=_response(payload=sample_detail_payload))
            client._client = mock_client

            await client.fetch_stock_detail("A/B")

        assert mock_client.get.call_args.args[0] == "/stock/A%2FB"

    @pytest.mark.asyncio
    async def test_api_error_not_retried(self):
        """Should raise ExchangeAPIError on 4xx/5xx without retrying."""
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=_response(503, text="Service Unavailable"))
            client._client = mock_client

            with pytest.raises(ExchangeAPIError) as exc_info:
                await client.list_stocks()

        assert exc_info.value.status_code == 503
        assert mock_client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_connection_error_retried(self, sample_stock_payload):
        """Transport errors are retried up to the configured attempts."""
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(side_effect=[
                httpx.ConnectError("refused"),
                httpx.ReadTimeout("slow"),
                _response(payload={"stocks": [sample_stock_payload]}),
            ])
            client._client = mock_client

            stocks = await client.list_stocks()

        assert len(stocks) == 1
        assert mock_client.get.await_count == 3

    @pytest.mark.asyncio
    async def test_connection_error_exhausted(self):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
            client._client = mock_client

            with pytest.raises(ExchangeConnectionError):
                await client.list_stocks()

        assert mock_client.get.await_count == 3

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)
        response = _response(text="<html>")
        response.json.side_effect = ValueError("not json")

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=response)
            client._client = mock_client

            with pytest.raises(ExchangeDataError, match="not valid JSON"):
                await client.list_stocks()

    @pytest.mark.asyncio
    async def test_correlation_id_forwarded(self):
        client = ExchangeClient(base_url="https://exchange.test", retry_config=NO_WAIT)

        with patch.object(client, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=_response(payload={"stocks": []}))
            client._client = mock_client

            with correlation_context("run-1234"):
                await client.list_stocks()

        assert mock_client.get.call_args.kwargs["headers"] == {"X-Request-ID": "run-1234"}
