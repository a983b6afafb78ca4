"""Objects shared by the API route modules."""
import time

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.duckdb_store import get_store
from core.exceptions import ValidationError
from core.observability import get_logger

# One limiter for all routers; keyed by client address
limiter = Limiter(key_func=get_remote_address)

# Process start, for uptime reporting
START_TIME = time.time()

__all__ = ["limiter", "get_store", "get_logger", "START_TIME", "bad_request"]


def bad_request(error: ValidationError) -> HTTPException:
    """Turn a query-parameter validation failure into HTTP 400."""
    return HTTPException(status_code=400, detail=str(error))
