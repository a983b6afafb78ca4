"""
Core library for the exchange history service.

This package holds everything below the HTTP layer:
- exceptions: Custom exception hierarchy
- models: Stock/shareholder dataclasses and history buckets
- duckdb_store: Time-series store
- sync_service / scheduler: Upstream sync jobs and their triggers
- config: Centralized configuration
"""

# Import in dependency order
from core.exceptions import (
    ExchangeError,
    ExchangeConnectionError,
    ExchangeAPIError,
    ExchangeDataError,
    ValidationError,
    QueryTimeoutError,
)

from core.models import (
    Bucket,
    Stock,
    Shareholder,
    StockDetail,
    PricePoint,
    ShareholderSnapshot,
)

from core.config import config

__all__ = [
    # Exceptions
    "ExchangeError",
    "ExchangeConnectionError",
    "ExchangeAPIError",
    "ExchangeDataError",
    "ValidationError",
    "QueryTimeoutError",
    # Models
    "Bucket",
    "Stock",
    "Shareholder",
    "StockDetail",
    "PricePoint",
    "ShareholderSnapshot",
    # Config
    "config",
]
