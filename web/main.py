"""
FastAPI application serving the recorded exchange history.

Startup validates configuration, opens the DuckDB store and (unless
disabled) runs the sync catch-up and arms the scheduler.
"""
import os

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from web.routes import api
from web.routes.api._deps import limiter
from web.middleware import RequestLoggingMiddleware, RequestTimeoutMiddleware
from core.config import config, validate_config, ConfigurationError
from core.duckdb_store import get_store, close_store
from core.exchange_client import close_client
from core.observability import setup_logging, get_logger, get_correlation_id
from core.scheduler import start_scheduler, stop_scheduler

setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_format=os.getenv("LOG_FORMAT", "text").lower() == "json",
)
logger = get_logger(__name__)

app = FastAPI(
    title="Exchange History",
    description="Hourly and daily snapshots of exchange stocks and shareholders",
    version=config.version,
    default_response_class=ORJSONResponse
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    client = get_remote_address(request)
    logger.warning(f"Rate limit hit by {client} on {request.url.path}", extra={"client_ip": client})
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": f"Limit is {exc.detail}, slow down and retry",
            "correlation_id": get_correlation_id(),
        }
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) or type(exc).__name__,
            "correlation_id": get_correlation_id(),
        }
    )


# Added last runs first: gzip, then logging (sets correlation id), then timeout
app.add_middleware(RequestTimeoutMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    logger.info(f"Exchange history {config.version} starting")

    try:
        validate_config()
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        raise SystemExit(1)

    # The store is required; any failure here aborts startup
    store = await get_store()
    stats = await store.get_stats()
    logger.info(
        f"History store {store.db_path}: {stats['stocks']} stocks, "
        f"{stats['price_points']} prices, {stats['shareholder_rows']} shareholder rows"
    )

    if not config.scheduler.enabled:
        logger.info("SCHEDULER_ENABLED=false, serving stored history without syncing")
        return

    # Catch-up runs before the triggers are armed; a broken cursor read is fatal
    handle = await start_scheduler()
    logger.info(f"Sync triggers armed: {', '.join(handle.armed)}")


@app.on_event("shutdown")
async def shutdown_event():
    # Each step is attempted even if an earlier one fails
    steps = (
        ("scheduler", stop_scheduler),
        ("exchange client", close_client),
        ("history store", close_store),
    )
    for name, step in steps:
        try:
            outcome = step()
            if outcome is not None:
                await outcome
        except Exception as e:
            logger.warning(f"Error closing {name}: {e}")
    logger.info("Exchange history stopped")


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    uvicorn.run("web.main:app", host=config.web.host, port=config.web.port, log_config=None)


if __name__ == "__main__":
    main()
