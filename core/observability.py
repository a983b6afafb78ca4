"""
Logging setup, correlation ids, timers and in-memory metrics.

A correlation id is bound per HTTP request (by the middleware) and per
scheduled sync run (by SyncService), so every log line of one run can be
grepped together:

    with correlation_context() as run_id:
        logger.info("Refreshing prices", extra={"job": "refresh_values"})
"""
import json
import logging
import time
import uuid
from collections import Counter, deque
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterator, Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

QUIET_LIBRARIES = ("httpx", "httpcore", "apscheduler", "uvicorn.access")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Eight hex characters, enough to tell concurrent runs apart in logs."""
    return uuid.uuid4().hex[:8]


@contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block, then restore the previous one."""
    token = _correlation_id.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


# ═══════════════════════════════════════════════════════════════════════════════
# FORMATTERS
# ═══════════════════════════════════════════════════════════════════════════════

class _ContextFormatter(logging.Formatter):
    """Shared helpers: UTC timestamps and the record's extra fields."""

    @staticmethod
    def extras(record: logging.LogRecord) -> Dict[str, Any]:
        return {
            key: value for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }

    @staticmethod
    def utc(record: logging.LogRecord) -> datetime:
        return datetime.fromtimestamp(record.created, timezone.utc)


class StructuredFormatter(_ContextFormatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.utc(record).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        entry.update(self.extras(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(_ContextFormatter):
    """``2025-01-15 10:00:00 - INFO     - core.scheduler [ab12cd34] - message | {extras}``"""

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        line = "{ts} - {level:8} - {name}{corr} - {msg}".format(
            ts=self.utc(record).strftime("%Y-%m-%d %H:%M:%S"),
            level=record.levelname,
            name=record.name,
            corr=f" [{correlation_id}]" if correlation_id else "",
            msg=record.getMessage(),
        )
        extras = self.extras(record)
        if extras:
            line += f" | {extras}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False
) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Root log level name
        json_format: Emit StructuredFormatter JSON instead of text
        include_libs: Keep httpx/apscheduler/uvicorn access logs at the root level
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not include_libs:
        for name in QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class Timer:
    """
    Measure a block in milliseconds; optionally log the duration.

    Durations above ``slow_ms`` are logged at WARNING, others at DEBUG.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, slow_ms: float = 1000.0):
        self.name = name
        self.logger = logger
        self.slow_ms = slow_ms
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *exc):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if self.logger:
            self.logger.log(
                logging.WARNING if self.elapsed_ms > self.slow_ms else logging.DEBUG,
                f"{self.name} completed",
                extra={"duration_ms": round(self.elapsed_ms, 2)}
            )


def _percentile(ordered: list, fraction: float) -> float:
    index = min(int(len(ordered) * fraction), len(ordered) - 1)
    return round(ordered[index], 2)


class MetricsCollector:
    """
    Process-local counters and rolling timing samples.

    Request counts are keyed by route template, timings by route or sync job
    name, and sync outcomes by job name. Nothing is persisted.
    """

    def __init__(self, max_samples: int = 100):
        self._max_samples = max_samples
        self._requests: Counter = Counter()
        self._errors: Counter = Counter()
        self._timings: Dict[str, Deque[float]] = {}
        self._sync: Dict[str, Counter] = {}

    def record_request(self, endpoint: str) -> None:
        self._requests[endpoint] += 1

    def record_error(self, error_type: str) -> None:
        self._errors[error_type] += 1

    def record_timing(self, operation: str, duration_ms: float) -> None:
        samples = self._timings.get(operation)
        if samples is None:
            samples = self._timings[operation] = deque(maxlen=self._max_samples)
        samples.append(duration_ms)

    def record_sync(self, job: str, succeeded: int, failed: int) -> None:
        """Accumulate one sync run's per-stock outcome."""
        counts = self._sync.setdefault(job, Counter())
        counts["runs"] += 1
        counts["succeeded"] += succeeded
        counts["failed"] += failed

    def get_stats(self) -> Dict[str, Any]:
        timing = {}
        for operation, samples in self._timings.items():
            if not samples:
                continue
            ordered = sorted(samples)
            timing[operation] = {
                "count": len(ordered),
                "avg_ms": round(sum(ordered) / len(ordered), 2),
                "min_ms": round(ordered[0], 2),
                "max_ms": round(ordered[-1], 2),
                "p50_ms": _percentile(ordered, 0.5),
                "p95_ms": _percentile(ordered, 0.95),
            }
        return {
            "requests": dict(self._requests),
            "errors": dict(self._errors),
            "timing": timing,
            "sync": {job: dict(counts) for job, counts in self._sync.items()},
        }

    def reset(self) -> None:
        self._requests.clear()
        self._errors.clear()
        self._timings.clear()
        self._sync.clear()


metrics = MetricsCollector()
