"""
Retry helper with linear or exponential backoff.

Used by the posting automaton (navigation, challenge solving, popup
apply button) and the AI / blog API clients. The operation is re-run
until it returns, the attempt ceiling is hit, or it raises an error the
caller marks as non-retryable; the last error is then re-raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffMode(Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    mode: BackoffMode = BackoffMode.LINEAR

    def delay_for(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        if self.mode is BackoffMode.EXPONENTIAL:
            delay = self.base_delay_seconds * (2 ** (attempt - 1))
        else:
            delay = self.base_delay_seconds * attempt
        return min(delay, self.max_delay_seconds)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    config: Optional[RetryConfig] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    operation: str = "",
    **kwargs,
) -> T:
    """
    Await func(*args, **kwargs), retrying on failure.

    Args:
        func: Coroutine function to run
        config: Attempt ceiling and backoff shape
        retry_on: Exception types that count as a failed attempt
        should_retry: Optional predicate; returning False re-raises immediately
        operation: Label used in log lines

    Returns:
        The first successful result.
    """
    config = config or RetryConfig()
    label = operation or getattr(func, "__name__", "operation")

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= config.max_attempts:
                logger.error(f"All {config.max_attempts} attempts failed for {label}: {e}")
                raise
            wait_time = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt}/{config.max_attempts} failed for {label}: {e}. "
                f"Retrying in {wait_time:.1f}s..."
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError(f"retry_async called with max_attempts={config.max_attempts}")
