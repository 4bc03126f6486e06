"""
Retry and polling utilities for UI interactions.

The Inspector gives no explicit completion signal for most actions, so
the harness either retries a whole operation (``retry_async``) or polls
the DOM for evidence (``await_condition``).
"""
import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, List, Optional, Type, Union

from .errors import ConditionTimeoutError
from .logging_config import get_logger

logger = get_logger("retry")


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [
            asyncio.TimeoutError,
            ConnectionError,
            OSError
        ]


def is_retryable_exception(exception: Exception, retryable_types: List[Type[Exception]]) -> bool:
    """Check if an exception is retryable"""
    return any(isinstance(exception, exc_type) for exc_type in retryable_types)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for retry attempt"""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= random.uniform(0.5, 1.5)

    return delay


async def retry_async(
    func: Callable,
    *args,
    config: Optional[RetryConfig] = None,
    **kwargs
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        *args: Arguments to pass to function
        config: Retry configuration
        **kwargs: Keyword arguments to pass to function

    Returns:
        Result of successful function call

    Raises:
        Last exception if all retries fail
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_exception(e, config.retryable_exceptions):
                raise
            if attempt == config.max_attempts:
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"{getattr(func, '__name__', 'call')} failed (attempt {attempt}/{config.max_attempts}): "
                f"{e}; retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)


Predicate = Callable[[], Union[bool, Awaitable[bool]]]


async def await_condition(
    predicate: Predicate,
    interval: float = 1.0,
    max_attempts: int = 10,
    description: str = "condition",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    error_factory: Optional[Callable[[int], Exception]] = None,
) -> int:
    """
    Poll ``predicate`` until it returns true or the attempt budget runs out.

    Each attempt sleeps ``interval`` seconds first, then evaluates the
    predicate, so the total wait is bounded by ``interval * max_attempts``.
    Exceptions raised by the predicate count as a false reading; the DOM
    is often mid-render when it is probed.

    Args:
        predicate: Sync or async callable returning a truthy value on success
        interval: Seconds to wait before each attempt
        max_attempts: Number of attempts before giving up
        description: Used in log lines and the timeout message
        sleep: Injectable sleep coroutine (tests pass a no-op)
        error_factory: Builds the exception raised on exhaustion

    Returns:
        The 1-based attempt number on which the predicate held

    Raises:
        ConditionTimeoutError (or whatever ``error_factory`` returns)
    """
    for attempt in range(1, max_attempts + 1):
        await sleep(interval)
        try:
            outcome = predicate()
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.debug(f"{description}: probe {attempt} raised {type(e).__name__}: {e}")
            outcome = False

        if outcome:
            logger.debug(f"{description}: satisfied on attempt {attempt}")
            return attempt

    if error_factory is not None:
        raise error_factory(max_attempts)
    raise ConditionTimeoutError(
        f"{description} not met after {max_attempts} attempts ({interval * max_attempts:g}s)",
        attempts=max_attempts,
    )

