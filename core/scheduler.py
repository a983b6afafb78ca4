"""
Background sync scheduler using APScheduler.

Arms two independent triggers in the history timezone:
- hourly_prices:    price refresh on every exact hour boundary
- midnight_details: detail refresh at the next civil midnight, re-armed
                    after each run

Before arming, a startup catch-up compares the newest stored observation
with the current wall-clock time and runs whichever jobs are overdue.

Features:
- Job execution history
- Prevents job pile-up (max_instances=1, coalesce)
- A failing job never stops the other trigger
- Graceful shutdown (running jobs finish, future firings are dropped)
"""
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional
from enum import Enum
from zoneinfo import ZoneInfo

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import (
    EVENT_JOB_EXECUTED,
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)

from core.clock import (
    next_hour_boundary,
    next_midnight,
    now_in_zone,
    seconds_until,
    wall_clock_elapsed,
)
from core.config import config
from core.observability import get_logger
from core.sync_service import SyncResult, SyncService

logger = get_logger(__name__)

HOURLY_JOB_ID = "hourly_prices"
MIDNIGHT_JOB_ID = "midnight_details"
HISTORY_SIZE = 50  # executions kept per trigger
# A firing delayed by a blocked loop or a suspended host still runs late;
# coalesce folds any backlog into a single run
MISFIRE_GRACE_TIME = None


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


class JobStatus(Enum):
    """Job execution status."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    MISSED = "missed"


@dataclass
class JobExecution:
    """One finished (or missed) run of a trigger."""
    job_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: JobStatus = JobStatus.RUNNING
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    trigger: str = "scheduled"  # or "catch-up"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "trigger": self.trigger,
            "result": self.result,
        }


@dataclass
class JobInfo:
    """Running totals for one trigger."""
    id: str
    name: str
    description: str
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_status: Optional[JobStatus] = None
    last_duration_ms: Optional[float] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None

    def apply(self, execution: JobExecution) -> None:
        """Fold an execution into the totals; a missed firing is not a run."""
        self.last_status = execution.status
        if execution.status is JobStatus.MISSED:
            return
        self.last_run = execution.started_at
        self.last_duration_ms = execution.duration_ms
        self.run_count += 1
        if execution.status is JobStatus.FAILED:
            self.error_count += 1
            self.last_error = execution.error

    def to_dict(self, trigger: str = "") -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger": trigger,
            "next_run": _iso(self.next_run),
            "last_run": _iso(self.last_run),
            "last_status": self.last_status.value if self.last_status else None,
            "last_duration_ms": self.last_duration_ms,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class SchedulerHandle:
    """
    The live set of armed triggers, returned by ``SyncScheduler.start()``.

    Maps trigger name to its APScheduler job. ``stop()`` removes every job
    and shuts the scheduler down without waiting for running jobs.
    """

    def __init__(self, scheduler: AsyncIOScheduler):
        self._scheduler = scheduler
        self.jobs: Dict[str, Job] = {}
        self.stopped = False

    def arm(self, name: str, job: Job) -> None:
        self.jobs[name] = job

    @property
    def armed(self) -> List[str]:
        return sorted(self.jobs)

    def next_run_time(self, name: str) -> Optional[datetime]:
        job = self._scheduler.get_job(name)
        # pending jobs have no next_run_time until the scheduler starts
        return getattr(job, "next_run_time", None) if job else None

    def stop(self) -> None:
        """Disarm all triggers; in-flight jobs are left to finish."""
        if self.stopped:
            return
        self.stopped = True
        for name in list(self.jobs):
            if self._scheduler.get_job(name):
                self._scheduler.remove_job(name)
        self.jobs.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)


class SyncScheduler:
    """
    Sync scheduler with monitoring.

    Usage:
        scheduler = SyncScheduler()
        handle = await scheduler.start()

        # Later...
        handle.stop()
    """

    def __init__(
        self,
        sync_service: Optional[SyncService] = None,
        tz: Optional[ZoneInfo] = None,
        price_interval_seconds: int = None,
    ):
        self._sync_service = sync_service
        self.tz = tz or config.scheduler.tz
        self.price_interval_seconds = price_interval_seconds or config.scheduler.price_interval_seconds
        self.price_stale_after = timedelta(seconds=config.scheduler.price_stale_after_seconds)
        self.details_stale_after = timedelta(seconds=config.scheduler.details_stale_after_seconds)

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._handle: Optional[SchedulerHandle] = None
        self._job_history: Dict[str, Deque[JobExecution]] = {}
        self._job_info: Dict[str, JobInfo] = {
            HOURLY_JOB_ID: JobInfo(
                id=HOURLY_JOB_ID,
                name="Hourly Prices",
                description="Record the current share price of every stock",
            ),
            MIDNIGHT_JOB_ID: JobInfo(
                id=MIDNIGHT_JOB_ID,
                name="Midnight Details",
                description="Record price and shareholders of every stock",
            ),
        }

    async def _service(self) -> SyncService:
        if self._sync_service is None:
            # Import here to avoid opening the store at import time
            from core.sync_service import get_sync_service
            self._sync_service = await get_sync_service()
        return self._sync_service

    # ═══════════════════════════════════════════════════════════════════════════
    # CATCH-UP
    # ═══════════════════════════════════════════════════════════════════════════

    async def check_and_run_scheduled_tasks(self, now: Optional[datetime] = None) -> List[SyncResult]:
        """
        Run overdue jobs based on the newest stored observation.

        No observation, or one older than an hour, runs the price refresh.
        No observation, or one older than a day, also runs the detail refresh.
        Both runs are awaited in that order.

        Returns:
            Results of the jobs that ran, possibly empty
        """
        service = await self._service()
        latest = await service.store.get_latest_observation_time()
        current = now or now_in_zone(self.tz)
        elapsed = None if latest is None else wall_clock_elapsed(latest, current, self.tz)

        run_values = elapsed is None or elapsed > self.price_stale_after
        run_details = elapsed is None or elapsed > self.details_stale_after

        if not run_values and not run_details:
            logger.info(f"Catch-up not needed, last observation at {latest}")
            return []

        logger.info(
            f"Catch-up: last observation {latest or 'never'}",
            extra={"refresh_values": run_values, "refresh_details": run_details}
        )

        results = []
        if run_values:
            results.append(await self._run_recorded(HOURLY_JOB_ID, service.refresh_values))
        if run_details:
            results.append(await self._run_recorded(MIDNIGHT_JOB_ID, service.refresh_details))
        return results

    async def _run_recorded(self, job_id: str, func: Callable) -> SyncResult:
        """Run a job body outside APScheduler and record it in the history."""
        started = now_in_zone(self.tz)
        try:
            result = await func()
        except Exception as e:
            self._record(job_id, JobStatus.FAILED, started, error=str(e) or type(e).__name__, trigger="catch-up")
            raise
        self._record(job_id, JobStatus.SUCCESS, started, result=result.to_dict(), trigger="catch-up")
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    async def start(self) -> SchedulerHandle:
        """
        Run the startup catch-up, then arm both triggers.

        Errors from the catch-up cursor read propagate, so a broken store is
        fatal at startup rather than at the first trigger.
        """
        if self._handle and not self._handle.stopped:
            logger.warning("Scheduler already started")
            return self._handle

        await self.check_and_run_scheduled_tasks()

        self._scheduler = AsyncIOScheduler(timezone=self.tz)
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self._handle = SchedulerHandle(self._scheduler)

        now = now_in_zone(self.tz)
        self._add_job(
            HOURLY_JOB_ID,
            self._run_hourly_prices,
            IntervalTrigger(
                seconds=self.price_interval_seconds,
                start_date=next_hour_boundary(now),
                timezone=self.tz,
            ),
        )
        self._arm_midnight(now)

        self._scheduler.start()
        started = now_in_zone(self.tz)
        for job_id in self._handle.armed:
            next_run = self._handle.next_run_time(job_id)
            if next_run:
                logger.info(
                    f"{job_id} armed, first run {next_run.isoformat()} "
                    f"(in {seconds_until(next_run, started):.0f}s)",
                    extra={"job_id": job_id}
                )
        return self._handle

    def stop(self) -> None:
        """Disarm every trigger."""
        if self._handle:
            self._handle.stop()
            logger.info("Sync scheduler stopped")

    @property
    def handle(self) -> Optional[SchedulerHandle]:
        return self._handle

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._handle is not None and not self._handle.stopped

    def _add_job(self, job_id: str, func: Callable, trigger) -> Job:
        """Add a job to the scheduler and to the handle."""
        job = self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=self._job_info[job_id].name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_TIME,
            replace_existing=True,
        )
        self._handle.arm(job_id, job)
        self._job_info[job_id].next_run = self._handle.next_run_time(job_id) or trigger_start(trigger)
        return job

    def _arm_midnight(self, now: Optional[datetime] = None) -> None:
        """Arm the one-shot detail refresh for the next civil midnight."""
        run_at = next_midnight(now or now_in_zone(self.tz))
        self._add_job(MIDNIGHT_JOB_ID, self._run_midnight_details, DateTrigger(run_date=run_at))
        logger.debug(f"Detail refresh armed for {run_at.isoformat()}")

    # ═══════════════════════════════════════════════════════════════════════════
    # JOB IMPLEMENTATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def _run_hourly_prices(self) -> Dict[str, Any]:
        service = await self._service()
        result = await service.refresh_values()
        return result.to_dict()

    async def _run_midnight_details(self) -> Dict[str, Any]:
        """Run the detail refresh, then re-arm for the following midnight."""
        try:
            service = await self._service()
            result = await service.refresh_details()
            return result.to_dict()
        finally:
            if self.is_running:
                self._arm_midnight()

    # ═══════════════════════════════════════════════════════════════════════════
    # EVENT HANDLERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        """Handle successful job execution."""
        if event.job_id in self._job_info:
            self._record(
                event.job_id,
                JobStatus.SUCCESS,
                event.scheduled_run_time,
                result=event.retval if isinstance(event.retval, dict) else None,
            )

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        """Handle job execution error."""
        if event.job_id not in self._job_info:
            return
        error = str(event.exception) if event.exception else "Unknown error"
        self._record(event.job_id, JobStatus.FAILED, event.scheduled_run_time, error=error)
        logger.error(
            f"Job {event.job_id} failed: {error}",
            extra={"job_id": event.job_id, "error": error}
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        """
        Record a missed firing.

        APScheduler drops a one-shot job whose only firing was missed, so the
        midnight trigger is re-armed here as well as after each run.
        """
        if event.job_id not in self._job_info:
            return
        self._record(event.job_id, JobStatus.MISSED, event.scheduled_run_time)
        logger.warning(
            f"Job {event.job_id} missed scheduled execution",
            extra={"job_id": event.job_id}
        )
        if event.job_id == MIDNIGHT_JOB_ID and self.is_running:
            self._arm_midnight()

    def _record(
        self,
        job_id: str,
        status: JobStatus,
        started_at: Optional[datetime],
        error: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
        trigger: str = "scheduled",
    ) -> None:
        """Append an execution to the bounded history and fold it into the job totals."""
        finished_at = now_in_zone(self.tz)
        started_at = started_at or finished_at
        execution = JobExecution(
            job_id=job_id,
            started_at=started_at,
            finished_at=finished_at,
            status=status,
            duration_ms=round((finished_at - started_at).total_seconds() * 1000, 2),
            error=error,
            result=result,
            trigger=trigger,
        )

        info = self._job_info[job_id]
        info.apply(execution)
        if self.is_running:
            info.next_run = self._handle.next_run_time(job_id)

        if job_id not in self._job_history:
            self._job_history[job_id] = deque(maxlen=HISTORY_SIZE)
        self._job_history[job_id].append(execution)

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Totals for both triggers, armed or not."""
        armed = self._handle.jobs if self._handle else {}
        return [
            info.to_dict(trigger=str(armed[job_id].trigger) if job_id in armed else "")
            for job_id, info in self._job_info.items()
        ]

    def get_job_history(self, job_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Most recent executions of one trigger, newest first.

        Raises:
            KeyError: If ``job_id`` is not one of the two triggers
        """
        if job_id not in self._job_info:
            raise KeyError(job_id)
        history = list(self._job_history.get(job_id, ()))
        return [execution.to_dict() for execution in reversed(history[-limit:])]


def trigger_start(trigger) -> Optional[datetime]:
    """First fire time of a trigger that is not attached to a running scheduler yet."""
    return getattr(trigger, "start_date", None) or getattr(trigger, "run_date", None)


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_scheduler: Optional[SyncScheduler] = None


def get_scheduler() -> SyncScheduler:
    """Get the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler


async def start_scheduler() -> SchedulerHandle:
    """Run catch-up and start the sync scheduler."""
    return await get_scheduler().start()


def stop_scheduler() -> None:
    """Stop the sync scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
