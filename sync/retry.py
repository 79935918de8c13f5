"""
Retry with exponential backoff for provider calls.

Attempt n (0-based) that fails with a retryable error waits
base_delay * 2**n seconds before the next one. Non-retryable errors
propagate immediately.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from core.config import settings
from core.exceptions import NonRetryableError, RateLimitError

logger = logging.getLogger(__name__)


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    description: str,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> Any:
    """
    Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        description: Used in log lines
        max_attempts: Total attempts (default SYNC_MAX_RETRIES)
        base_delay: Backoff base in seconds (default SYNC_RETRY_BASE_DELAY)
        retry_on: Exception types that are retried
        sleep: Injected for tests

    Returns:
        The operation's result

    Raises:
        The last exception once the budget is exhausted
    """
    attempts = max_attempts if max_attempts is not None else settings.SYNC_MAX_RETRIES
    delay_base = base_delay if base_delay is not None else settings.SYNC_RETRY_BASE_DELAY

    for attempt in range(attempts):
        try:
            return await operation()
        except NonRetryableError:
            raise
        except retry_on as e:
            if attempt >= attempts - 1:
                logger.error(f"{description} failed after {attempts} attempts: {str(e)}")
                raise

            delay = delay_base * (2 ** attempt)
            if isinstance(e, RateLimitError) and e.retry_after:
                delay = max(delay, float(e.retry_after))

            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}), "
                f"retrying in {delay:.1f}s: {str(e)}"
            )
            await sleep(delay)
