"""
Resilience Patterns Module.

Generic retry with exponential backoff for outbound calls to external
dependencies (partner destinations, smart home platforms).
"""

import asyncio
from functools import wraps
from typing import Awaitable, Callable, Optional

import httpx

from backend.app.core.logging import get_logger

logger = get_logger(__name__)

BackoffFn = Callable[[int], float]
RetryPredicate = Callable[[BaseException], bool]


def exponential_backoff(base: float, factor: float = 2.0, max_delay: Optional[float] = None) -> BackoffFn:
    """
    Delay before the next attempt, given how many attempts have failed so far.

    With base=0.5: 0.5s after the 1st failure, 1.0s after the 2nd, 2.0s after the 3rd...
    """
    def delay(failed_attempts: int) -> float:
        value = base * (factor ** max(failed_attempts - 1, 0))
        if max_delay is not None:
            value = min(value, max_delay)
        return value

    return delay


def is_transient_error(exc: BaseException) -> bool:
    """
    Transient = worth retrying: connection/transport errors, timeouts,
    5xx responses and 429. Any other HTTP status is permanent.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return status_code >= 500 or status_code == 429
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError)):
        return True
    return False


def retry_async(
    max_attempts: int = 3,
    backoff: Optional[BackoffFn] = None,
    retry_on: RetryPredicate = is_transient_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
):
    """
    Decorator retrying an async callable up to ``max_attempts`` total attempts.

    Errors rejected by ``retry_on`` propagate immediately. When attempts are
    exhausted the last error propagates unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def decorator(func: Callable[..., Awaitable]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_attempts or not retry_on(e):
                        raise
                    delay = backoff(attempt) if backoff else 0.0
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e!r}; "
                        f"retrying in {delay:.2f}s"
                    )
                    await sleep(delay)

        return wrapper

    return decorator
