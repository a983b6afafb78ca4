"""Health check and metrics endpoints."""
import time

from fastapi import APIRouter, Request

from core.clock import wall_clock_now
from core.config import config
from core.observability import get_correlation_id, metrics, Timer
from core.scheduler import get_scheduler
from web.schemas import HealthResponse, MetricsResponse
from ._deps import limiter, get_store, get_logger, START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Store reachability, row counts, cursor age and scheduler state."""
    uptime_seconds = int(time.time() - START_TIME)

    latest = None
    db_latency_ms = None
    try:
        with Timer("health_check_db") as timer:
            store = await get_store()
            duckdb_stats = await store.get_stats()
            latest = await store.get_latest_observation_time()
        duckdb_status = "connected"
        db_latency_ms = round(timer.elapsed_ms, 2)
    except Exception as e:
        logger.warning(f"Health check store error: {e}")
        duckdb_stats = None
        duckdb_status = f"error: {e}"

    scheduler = get_scheduler()
    if not config.scheduler.enabled:
        scheduler_state = "disabled"
    else:
        scheduler_state = "running" if scheduler.is_running else "stopped"

    return {
        "status": "healthy" if duckdb_stats else "degraded",
        "version": config.version,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_correlation_id(),
        "duckdb": {
            "status": duckdb_status,
            "latency_ms": db_latency_ms,
            **(duckdb_stats or {})
        },
        "scheduler": {
            "status": scheduler_state,
            "last_observation": latest.isoformat() if latest else None,
            "seconds_since_observation": (
                int((wall_clock_now() - latest).total_seconds()) if latest else None
            ),
            "jobs": scheduler.handle.armed if scheduler.handle else [],
        },
    }


@router.get("/metrics", response_model=MetricsResponse)
@limiter.limit("30/minute")
async def get_metrics_endpoint(request: Request):
    """Request counts, error counts, timings and sync outcomes since startup."""
    return {
        "uptime_seconds": int(time.time() - START_TIME),
        "correlation_id": get_correlation_id(),
        **metrics.get_stats(),
    }
