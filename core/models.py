"""
Domain models for exchange data.

Provides type-safe dataclasses for stocks, shareholders and the stored time
series, plus the bucket granularity used by history queries.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from core.exceptions import ExchangeDataError


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Bucket(str, Enum):
    """Granularity of a bucketed history query."""
    RAW = "raw"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def aliases(cls) -> Dict[str, "Bucket"]:
        """Frequency keywords accepted at the HTTP boundary."""
        return {
            "minutely": cls.RAW,
            "hourly": cls.HOUR,
            "daily": cls.DAY,
            "weekly": cls.WEEK,
            "monthly": cls.MONTH,
        }

    @classmethod
    def parse(cls, value: str) -> "Bucket":
        """Parse a bucket name or frequency alias (case-insensitive)."""
        key = (value or "").strip().lower()
        if key in cls.aliases():
            return cls.aliases()[key]
        try:
            return cls(key)
        except ValueError:
            valid = [b.value for b in cls] + list(cls.aliases())
            raise ValueError(
                f"Unknown frequency {value!r}. Valid options are: {', '.join(valid)}"
            ) from None

    @property
    def is_date_only(self) -> bool:
        """Buckets of a day or more are labelled with a date, not a time."""
        return self in (Bucket.DAY, Bucket.WEEK, Bucket.MONTH)


# ═══════════════════════════════════════════════════════════════════════════════
# PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None


def _parse_float(value: Any, field_name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ExchangeDataError(
            f"Invalid numeric field {field_name}",
            expected="number or numeric string",
            got=repr(value),
        ) from None


def _require(data: Dict[str, Any], key: str) -> Any:
    if data.get(key) is None:
        raise ExchangeDataError(f"Missing required field '{key}'", got=repr(sorted(data)))
    return data[key]


# ═══════════════════════════════════════════════════════════════════════════════
# DATACLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Stock:
    """A listed stock as reported by the exchange; ``share_price`` is its current value."""
    id: int
    ticker: str
    company_name: str
    share_price: float
    stock_type: str = ""
    logo: Optional[str] = None
    outstanding_shares: int = 0
    frozen: bool = False
    delisted: bool = False
    book_value: Optional[int] = None
    dividend_per_share: Optional[float] = None
    dividend_period: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Stock":
        """Create Stock from an exchange API payload (camelCase keys)."""
        if not isinstance(data, dict):
            raise ExchangeDataError("Stock payload must be an object", got=type(data).__name__)

        try:
            stock_id = int(_require(data, "id"))
        except (TypeError, ValueError):
            raise ExchangeDataError("Stock id must be an integer", got=repr(data.get("id"))) from None

        share_price = _parse_float(_require(data, "sharePrice"), "sharePrice")
        book_value = _parse_float(data.get("bookValue"), "bookValue")

        return cls(
            id=stock_id,
            ticker=str(_require(data, "ticker")),
            company_name=data.get("companyName") or "",
            share_price=share_price,
            stock_type=data.get("stockType") or "",
            logo=data.get("logo"),
            outstanding_shares=int(data.get("outstandingShares") or 0),
            frozen=bool(data.get("frozen", False)),
            delisted=bool(data.get("delisted", False)),
            book_value=int(book_value) if book_value is not None else None,
            dividend_per_share=_parse_float(data.get("dividendPerShare"), "dividendPerShare"),
            dividend_period=data.get("dividendPeriod"),
            created_at=_parse_datetime(data.get("createdAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
        )


@dataclass
class Shareholder:
    """One holder of a stock at the time of a detail fetch."""
    account_id: int
    username: str
    shares: int

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Shareholder":
        try:
            return cls(
                account_id=int(_require(data, "accountId")),
                username=str(data.get("username") or ""),
                shares=int(data.get("shares") or 0),
            )
        except (TypeError, ValueError, AttributeError):
            raise ExchangeDataError("Invalid shareholder entry", got=repr(data)) from None


@dataclass
class StockDetail:
    """Stock plus its current shareholder list."""
    stock: Stock
    shareholders: List[Shareholder] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StockDetail":
        raw_holders = data.get("shareholders") if isinstance(data, dict) else None
        if raw_holders is not None and not isinstance(raw_holders, list):
            raise ExchangeDataError(
                "shareholders must be a list",
                expected="list",
                got=type(raw_holders).__name__,
            )
        return cls(
            stock=Stock.from_api(data),
            shareholders=[Shareholder.from_api(h) for h in raw_holders or []],
        )

    @property
    def ticker(self) -> str:
        return self.stock.ticker


@dataclass(frozen=True)
class PricePoint:
    """One (bucket) timestamp and its representative share price."""
    timestamp: datetime
    share_price: float


@dataclass(frozen=True)
class ShareholderSnapshot:
    """A stored shareholder row."""
    stock_id: int
    ticker: str
    account_id: int
    username: str
    shares: int
    timestamp: datetime
