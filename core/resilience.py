"""
Transport-level retry policy for the upstream exchange client.

Only connection-class failures are retried here. Sync jobs never retry a
failed stock themselves; the next scheduled run picks it up.
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from core.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Attempt budget and exponential backoff shape."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1  # fraction of the delay added at random

    def delay_for(self, attempt: int) -> float:
        """Pause after failed ``attempt`` (1-based), before jitter."""
        return min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)

    def jittered_delay(self, attempt: int) -> float:
        delay = self.delay_for(attempt)
        return delay + delay * self.jitter * random.random()


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    operation: Optional[str] = None,
    **kwargs
) -> Any:
    """
    Await ``func(*args, **kwargs)``, retrying on ``retryable_exceptions``.

    Anything else propagates on the first occurrence. After the last
    attempt the final error is re-raised unchanged.
    """
    config = config or RetryConfig()
    label = operation or getattr(func, "__name__", "call")

    attempt = 1
    while True:
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= config.max_attempts:
                logger.error(
                    f"{label}: giving up after {attempt} attempts",
                    extra={"operation": label, "error": str(e)}
                )
                raise

            delay = config.jittered_delay(attempt)
            logger.warning(
                f"{label}: attempt {attempt}/{config.max_attempts} failed, retrying in {delay:.2f}s",
                extra={"operation": label, "attempt": attempt, "delay": round(delay, 2), "error": str(e)}
            )
            await asyncio.sleep(delay)
            attempt += 1
