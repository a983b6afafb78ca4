"""Pydantic response models; they also drive the OpenAPI documentation."""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# STOCKS
# ═══════════════════════════════════════════════════════════════════════════════

class StockResponse(BaseModel):
    """Current state of a tracked stock."""
    id: int
    ticker: str
    company_name: str
    share_price: float = Field(description="Latest recorded share price")
    stock_type: str
    logo: Optional[str] = None
    outstanding_shares: int
    frozen: bool
    delisted: bool
    book_value: Optional[int] = None
    dividend_per_share: Optional[float] = None
    dividend_period: Optional[str] = None
    created_at: Optional[datetime] = Field(None, description="Upstream creation time (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Upstream update time (UTC)")
    first_recorded_at: datetime = Field(description="First sync time (history timezone)")
    last_updated_at: datetime = Field(description="Latest sync time (history timezone)")


class PricePointResponse(BaseModel):
    """One bucket of price history."""
    timestamp: datetime = Field(description="Bucket start (history timezone)")
    share_price: float = Field(description="Price of the earliest observation in the bucket")


class StandardPricePoint(BaseModel):
    """OHLCV-shaped bucket; every price is the bucket value and volume is always 0."""
    date: str
    open: float
    high: float
    low: float
    close: float
    adjusted_close: float
    volume: int = 0


class PriceHistoryResponse(BaseModel):
    """Bucketed price history, newest first."""
    ticker: str
    frequency: str = Field(description="Resolved bucket: raw, hour, day, week or month")
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    count: int
    data: List[PricePointResponse]


class StandardHistoryResponse(BaseModel):
    """Bucketed price history reshaped into OHLCV records."""
    ticker: str
    start_date: str = ""
    end_date: str = ""
    frequency: str
    data: List[StandardPricePoint]


class ShareholderResponse(BaseModel):
    """One stored shareholder snapshot."""
    account_id: int
    username: str
    shares: int
    timestamp: datetime


class ShareholdersResponse(BaseModel):
    """Shareholder snapshots for a stock, newest first."""
    ticker: str
    count: int
    data: List[ShareholderResponse]


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class HistoryRange(BaseModel):
    min: Optional[str] = None
    max: Optional[str] = None


class StoreStats(BaseModel):
    """History store connectivity and row counts."""
    status: str
    latency_ms: Optional[float] = None
    stocks: Optional[int] = None
    price_points: Optional[int] = None
    shareholder_rows: Optional[int] = None
    history_range: Optional[HistoryRange] = None
    db_size_mb: Optional[float] = None


class SchedulerStatus(BaseModel):
    """Background sync status."""
    status: str = Field(description="running, stopped or disabled")
    last_observation: Optional[str] = Field(None, description="Newest recorded observation (ISO format)")
    seconds_since_observation: Optional[int] = None
    jobs: List[str] = Field(default_factory=list, description="Armed triggers")


class HealthResponse(BaseModel):
    """Liveness plus store and scheduler state."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str
    uptime_seconds: int
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    duckdb: StoreStats
    scheduler: Optional[SchedulerStatus] = None


# ═══════════════════════════════════════════════════════════════════════════════
# METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class TimingStats(BaseModel):
    """Rolling timing samples for one route or sync job."""
    count: int
    avg_ms: float
    min_ms: float
    max_ms: float
    p50_ms: Optional[float] = None
    p95_ms: Optional[float] = None


class MetricsResponse(BaseModel):
    """In-memory counters since process start."""
    uptime_seconds: int
    correlation_id: Optional[str] = None
    requests: Dict[str, int] = Field(default_factory=dict)
    errors: Dict[str, int] = Field(default_factory=dict)
    timing: Dict[str, TimingStats] = Field(default_factory=dict)
    sync: Dict[str, Dict[str, int]] = Field(default_factory=dict, description="Per-job runs and per-stock outcomes")


# ═══════════════════════════════════════════════════════════════════════════════
# BACKGROUND JOBS
# ═══════════════════════════════════════════════════════════════════════════════

class JobInfo(BaseModel):
    """Totals for one sync trigger."""
    id: str = Field(description="hourly_prices or midnight_details")
    name: str
    description: str
    trigger: str = Field(description="Trigger type and schedule")
    next_run: Optional[str] = Field(None, description="Next scheduled run (ISO format)")
    last_run: Optional[str] = Field(None, description="Last run time (ISO format)")
    last_status: Optional[str] = Field(None, description="Last run status")
    last_duration_ms: Optional[float] = Field(None, description="Last run duration in ms")
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


class JobHistoryEntry(BaseModel):
    """One execution of a sync trigger."""
    started_at: str = Field(description="Start time (ISO format)")
    finished_at: Optional[str] = Field(None, description="Completion time (ISO format)")
    duration_ms: Optional[float] = None
    status: str = Field(description="Execution status: success/failed/missed")
    error: Optional[str] = Field(None, description="Error message if failed")
    trigger: str = Field(description="scheduled or catch-up")
    result: Optional[Dict[str, Any]] = Field(None, description="SyncResult of the run: total, succeeded, failed, failed_tickers")


class JobsResponse(BaseModel):
    """Both sync triggers and whether the scheduler is armed."""
    status: str = Field(description="Scheduler status: running/not_running")
    jobs: List[JobInfo] = Field(default_factory=list, description="Registered jobs")


class JobHistoryResponse(BaseModel):
    job_id: str
    history: List[JobHistoryEntry] = Field(default_factory=list)
