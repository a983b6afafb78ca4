"""Stock list, stock detail, price history and shareholder history endpoints."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.config import config
from core.exceptions import ValidationError
from core.models import Bucket, PricePoint
from core.validators import (
    resolve_range,
    validate_account_id,
    validate_frequency,
    validate_ticker,
)
from web.schemas import (
    PriceHistoryResponse,
    PricePointResponse,
    ShareholderResponse,
    ShareholdersResponse,
    StandardHistoryResponse,
    StandardPricePoint,
    StockResponse,
)
from ._deps import limiter, get_store, get_logger, bad_request

router = APIRouter()
logger = get_logger(__name__)

FREQUENCY_DESCRIPTION = (
    "Bucket size: raw, hour, day, week, month, or minutely, hourly, daily, "
    f"weekly, monthly. Defaults to '{config.web.default_frequency}'."
)


def format_bucket_label(moment: datetime, bucket: Bucket) -> str:
    """Date only for day-or-coarser buckets, date and time otherwise."""
    if bucket.is_date_only:
        return moment.strftime("%Y-%m-%d")
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def to_standard_format(points: List[PricePoint], bucket: Bucket) -> List[StandardPricePoint]:
    """Reshape buckets into OHLCV records; all prices are the bucket value."""
    return [
        StandardPricePoint(
            date=format_bucket_label(p.timestamp, bucket),
            open=p.share_price,
            high=p.share_price,
            low=p.share_price,
            close=p.share_price,
            adjusted_close=p.share_price,
            volume=0,
        )
        for p in points
    ]


@router.get("/stocks", response_model=List[StockResponse])
@limiter.limit("60/minute")
async def list_stocks(request: Request):
    """All tracked stocks ordered by ticker."""
    store = await get_store()
    return await store.get_all_stocks()


@router.get("/stock/{ticker}", response_model=StockResponse)
@limiter.limit("60/minute")
async def get_stock(request: Request, ticker: str):
    """Current state of one stock."""
    try:
        ticker = validate_ticker(ticker)
    except ValidationError as e:
        raise bad_request(e)

    store = await get_store()
    stock = await store.get_stock_by_ticker(ticker)
    if stock is None:
        raise HTTPException(status_code=404, detail=f"Stock with ticker {ticker} not found")
    return stock


@router.get("/stock/{ticker}/historical")
@limiter.limit("30/minute")
async def get_price_history(
    request: Request,
    ticker: str,
    start_date: Optional[str] = Query(None, alias="startDate", description="YYYY-MM-DD or ISO datetime"),
    end_date: Optional[str] = Query(
        None, alias="endDate", description="YYYY-MM-DD (whole day included) or ISO datetime; requires startDate"
    ),
    frequency: Optional[str] = Query(None, description=FREQUENCY_DESCRIPTION),
    output_format: str = Query("default", alias="format", pattern="^(default|standard)$", description="default or standard (OHLCV)"),
):
    """
    Bucketed price history, newest first.

    Each bucket carries the price of its earliest observation. An unknown
    ticker yields an empty list.
    """
    try:
        ticker = validate_ticker(ticker)
        start, end = resolve_range(start_date, end_date)
        bucket = validate_frequency(frequency, config.web.default_frequency)
    except ValidationError as e:
        raise bad_request(e)

    store = await get_store()
    points = await store.query_bucketed(ticker, start, end, bucket)
    logger.debug(f"{ticker} history: {len(points)} {bucket.value} buckets")

    if output_format == "standard":
        return StandardHistoryResponse(
            ticker=ticker,
            start_date=start.isoformat() if start else "",
            end_date=end.isoformat() if end else "",
            frequency=bucket.value,
            data=to_standard_format(points, bucket),
        )

    return PriceHistoryResponse(
        ticker=ticker,
        frequency=bucket.value,
        start=start,
        end=end,
        count=len(points),
        data=[PricePointResponse(timestamp=p.timestamp, share_price=p.share_price) for p in points],
    )


@router.get("/stock/{ticker}/shareholders", response_model=ShareholdersResponse)
@limiter.limit("30/minute")
async def get_shareholder_history(
    request: Request,
    ticker: str,
    account_id: Optional[int] = Query(None, alias="accountId", description="Only this shareholder"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
):
    """Shareholder snapshots for a stock, newest first."""
    try:
        ticker = validate_ticker(ticker)
        account_id = validate_account_id(account_id)
        start, end = resolve_range(start_date, end_date)
    except ValidationError as e:
        raise bad_request(e)

    store = await get_store()
    snapshots = await store.query_shareholders(ticker, account_id, start, end)
    return {
        "ticker": ticker,
        "count": len(snapshots),
        "data": [
            ShareholderResponse(
                account_id=s.account_id,
                username=s.username,
                shares=s.shares,
                timestamp=s.timestamp,
            )
            for s in snapshots
        ],
    }
