"""
Pytest configuration and shared fixtures.
"""
import pytest
import pytest_asyncio
from datetime import datetime
from typing import Dict, List, Any
from unittest.mock import AsyncMock, MagicMock

from core.duckdb_store import DuckDBStore
from core.models import Stock


@pytest.fixture
def sample_stock_payload() -> Dict[str, Any]:
    """One stock as returned by GET /stocks."""
    return {
        "id": 1,
        "ticker": "ABC",
        "companyName": "Alphabet Blocks Co",
        "sharePrice": "10.50",
        "stockType": "company",
        "logo": "https://cdn.example.com/abc.png",
        "outstandingShares": 100000,
        "frozen": False,
        "delisted": False,
        "bookValue": 250000,
        "dividendPerShare": "0.25",
        "dividendPeriod": "monthly",
        "createdAt": "2024-03-01T12:00:00Z",
        "updatedAt": "2025-01-15T08:30:00Z",
    }


@pytest.fixture
def sample_detail_payload(sample_stock_payload) -> Dict[str, Any]:
    """One stock as returned by GET /stock/{ticker}."""
    return {
        **sample_stock_payload,
        "shareholders": [
            {"accountId": 7, "username": "alice", "shares": 600},
            {"accountId": 9, "username": "bob", "shares": 400},
        ],
    }


@pytest.fixture
def sample_stocks(sample_stock_payload) -> List[Stock]:
    """Three parsed stocks."""
    return [
        Stock.from_api(sample_stock_payload),
        Stock.from_api({**sample_stock_payload, "id": 2, "ticker": "DEF", "sharePrice": 3.2}),
        Stock.from_api({**sample_stock_payload, "id": 3, "ticker": "GHI", "sharePrice": "99.99"}),
    ]


@pytest.fixture
def mock_client() -> MagicMock:
    """Exchange client with async methods stubbed."""
    client = MagicMock()
    client.list_stocks = AsyncMock(return_value=[])
    client.fetch_stock_detail = AsyncMock()
    return client


@pytest.fixture
def mock_store() -> MagicMock:
    """Store with async methods stubbed."""
    store = MagicMock()
    store.save_stock = AsyncMock()
    store.save_stock_detail = AsyncMock(return_value=0)
    store.get_latest_observation_time = AsyncMock(return_value=None)
    store.query_bucketed = AsyncMock(return_value=[])
    store.query_shareholders = AsyncMock(return_value=[])
    store.get_all_stocks = AsyncMock(return_value=[])
    store.get_stock_by_ticker = AsyncMock(return_value=None)
    store.get_stats = AsyncMock(return_value={
        "stocks": 0,
        "price_points": 0,
        "shareholder_rows": 0,
        "history_range": {"min": None, "max": None},
        "db_size_mb": 0,
    })
    return store


@pytest_asyncio.fixture
async def store(tmp_path):
    """Real DuckDB store in a temporary file."""
    db = DuckDBStore(db_path=tmp_path / "history.duckdb")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def stored_stock_row() -> Dict[str, Any]:
    """A stocks row as returned by DuckDBStore.get_stock_by_ticker."""
    return {
        "id": 1,
        "ticker": "ABC",
        "company_name": "Alphabet Blocks Co",
        "logo": None,
        "outstanding_shares": 100000,
        "frozen": False,
        "delisted": False,
        "stock_type": "company",
        "book_value": 250000,
        "dividend_per_share": 0.25,
        "dividend_period": "monthly",
        "created_at": datetime(2024, 3, 1, 12, 0),
        "updated_at": datetime(2025, 1, 15, 8, 30),
        "share_price": 10.5,
        "first_recorded_at": datetime(2025, 1, 15, 9, 0),
        "last_updated_at": datetime(2025, 1, 15, 10, 0),
    }
