"""
Async HTTP client for the upstream exchange API.

Two read operations are used by the sync jobs:
- list_stocks():          GET /stocks          -> {"stocks": [...]}
- fetch_stock_detail(t):  GET /stock/{ticker}  -> stock fields + "shareholders"

Features:
- Connection pooling with httpx
- Exponential backoff retry for transport errors (3 attempts)
- Request correlation IDs for tracing
"""
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from core.config import config
from core.exceptions import ExchangeAPIError, ExchangeConnectionError, ExchangeDataError
from core.models import Stock, StockDetail
from core.observability import get_logger, get_correlation_id, Timer
from core.resilience import RetryConfig, retry_with_backoff

logger = get_logger(__name__)

RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=30.0,
    exponential_base=2.0
)


class ExchangeClient:
    """
    Async HTTP client for the exchange API.

    Usage:
        async with ExchangeClient() as client:
            stocks = await client.list_stocks()
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        retry_config: RetryConfig = RETRY_CONFIG,
    ):
        self.base_url = (base_url or config.exchange.base_url).rstrip("/")
        self.timeout = timeout or config.exchange.request_timeout
        self.retry_config = retry_config
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"exchange-history/{config.version}",
        }

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ExchangeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get(self, path: str) -> Any:
        """GET a path with retry on connection errors. HTTP error statuses are not retried."""
        return await retry_with_backoff(
            self._do_get,
            path,
            config=self.retry_config,
            retryable_exceptions=(ExchangeConnectionError,),
            operation=f"GET {path}",
        )

    async def _do_get(self, path: str) -> Any:
        """Execute a single GET (called by the retry wrapper)."""
        if not self._client:
            await self.connect()

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            with Timer(f"exchange_get {path}", logger):
                response = await self._client.get(path, headers=request_headers or None)
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: GET {path}", extra={"timeout": self.timeout})
            raise ExchangeConnectionError(f"Request timeout after {self.timeout}s", path=path) from e
        except httpx.RequestError as e:
            logger.error(f"Request failed: GET {path} - {e}")
            raise ExchangeConnectionError(str(e) or type(e).__name__, path=path) from e

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.error(
                f"API error {response.status_code}: {error_text}",
                extra={"path": path, "status_code": response.status_code}
            )
            raise ExchangeAPIError(
                f"API returned {response.status_code}",
                path=path,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExchangeDataError(
                "Response is not valid JSON", path=path, expected="JSON", got=response.text[:100]
            ) from e

    async def list_stocks(self) -> List[Stock]:
        """Fetch every listed stock with its current share price."""
        payload = await self._get("/stocks")
        if not isinstance(payload, dict) or not isinstance(payload.get("stocks"), list):
            raise ExchangeDataError(
                "Unexpected /stocks payload",
                expected="object with 'stocks' list",
                got=type(payload).__name__,
            )
        return [Stock.from_api(item) for item in payload["stocks"]]

    async def fetch_stock_detail(self, ticker: str) -> StockDetail:
        """Fetch one stock including its shareholders."""
        payload = await self._get(f"/stock/{quote(ticker, safe='')}")
        if not isinstance(payload, dict):
            raise ExchangeDataError(
                f"Unexpected detail payload for {ticker}",
                expected="object",
                got=type(payload).__name__,
            )
        return StockDetail.from_api(payload)


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_client_instance: Optional[ExchangeClient] = None


def get_client() -> ExchangeClient:
    """Get singleton exchange client instance."""
    global _client_instance
    if _client_instance is None:
        _client_instance = ExchangeClient()
    return _client_instance


async def close_client() -> None:
    """Close the singleton client's connection pool."""
    global _client_instance
    if _client_instance:
        await _client_instance.close()
        _client_instance = None
