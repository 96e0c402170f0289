"""Retry strategies for different exception types."""

import asyncio
import logging as stdlib_logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from playtime_farmer.constants import Persistence, RateLimits
from playtime_farmer.core.exceptions import RateLimitError

# Stdlib logger needed for tenacity's before_sleep_log
_stdlib_logger = stdlib_logging.getLogger(__name__)


def _make_retry(
    attempts: int,
    wait_strategy: object,
    exception_types: Union[Type[Exception], Tuple[Type[Exception], ...]],
) -> object:
    """
    Factory for creating retry decorators with consistent configuration.

    Args:
        attempts: Maximum number of retry attempts
        wait_strategy: Tenacity wait strategy
        exception_types: Exception type(s) to retry on

    Returns:
        Configured retry decorator
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_strategy,
        retry=retry_if_exception_type(exception_types),
        before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
        reraise=True,
    )


def get_replace_retry():
    """
    Get retry strategy for atomic file replacement.

    Another process (virus scanner, backup agent, a second reader on Windows)
    may hold the destination open for a moment.

    Returns:
        Retry decorator configured for transient permission errors
    """
    return _make_retry(
        attempts=Persistence.REPLACE_ATTEMPTS,
        wait_strategy=wait_fixed(Persistence.REPLACE_WAIT_SECONDS),
        exception_types=PermissionError,
    )


def get_rate_limit_cooldown(
    cooldown: float = RateLimits.ACCOUNT_COOLDOWN_SECONDS,
    cycles: int = RateLimits.MAX_COOLDOWN_CYCLES,
    jitter: Optional[float] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> AsyncRetrying:
    """
    Get the account-level cool-down used after the provider throttles an account.

    Args:
        cooldown: Fixed wait before the account is started again
        cycles: Number of cool-downs before the rate limit is final
        jitter: Upper bound of the random extra wait; defaults to a tenth of the
            cool-down, capped at COOLDOWN_JITTER_SECONDS
        sleep: Awaitable sleep function (lets shutdown interrupt the wait)

    Returns:
        Async retrying controller for ``async for attempt in ...`` loops
    """
    if jitter is None:
        jitter = min(RateLimits.COOLDOWN_JITTER_SECONDS, cooldown / 10)
    return AsyncRetrying(
        sleep=sleep or asyncio.sleep,
        stop=stop_after_attempt(cycles + 1),
        wait=wait_fixed(cooldown) + wait_random(0, jitter),
        retry=retry_if_exception_type(RateLimitError),
        before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
        reraise=True,
    )
