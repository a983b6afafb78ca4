"""Sync scheduler job status and execution history endpoints."""
from fastapi import APIRouter, HTTPException, Query, Request

from core.exceptions import ValidationError
from core.scheduler import get_scheduler
from core.validators import validate_limit
from web.schemas import JobHistoryResponse, JobsResponse
from ._deps import limiter, get_logger, bad_request

router = APIRouter()
logger = get_logger(__name__)


@router.get("/jobs", response_model=JobsResponse)
@limiter.limit("60/minute")
async def list_jobs(request: Request):
    """Both sync triggers with run counts, last status and next run time."""
    scheduler = get_scheduler()
    return {
        "status": "running" if scheduler.is_running else "not_running",
        "jobs": scheduler.get_jobs(),
    }


@router.get("/jobs/{job_id}/history", response_model=JobHistoryResponse)
@limiter.limit("60/minute")
async def get_job_history(
    request: Request,
    job_id: str,
    limit: int = Query(10, description="Number of executions to return (max 50)"),
):
    """Recent executions of one job, newest first."""
    try:
        limit = validate_limit(limit)
    except ValidationError as e:
        raise bad_request(e)

    try:
        history = get_scheduler().get_job_history(job_id, limit=limit)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    return {"job_id": job_id, "history": history}
