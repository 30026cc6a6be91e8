"""Asynchronous utility functions."""

import asyncio
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from apirunner.exceptions import ScriptExecutionError
from apirunner.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


async def sleep_ms(milliseconds: Optional[float]) -> None:
    """
    Sleep for the given number of milliseconds.

    ``None``, zero and negative values return immediately.
    """
    if milliseconds and milliseconds > 0:
        await asyncio.sleep(milliseconds / 1000)


async def run_with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    description: str = "operation"
) -> T:
    """
    Await with a timeout, converting expiry into ``ScriptExecutionError``.

    Args:
        awaitable: The awaitable to run
        seconds: Timeout in seconds
        description: Name used in the error message

    Returns:
        The awaited result

    Raises:
        ScriptExecutionError: If the timeout elapses
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise ScriptExecutionError(f"{description} timed out after {seconds} seconds")


def retry_async(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator to retry async functions.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between attempts in seconds
        backoff: Backoff multiplier for delay
        exceptions: Tuple of exceptions that trigger another attempt

    Returns:
        Decorated function
    """
    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} of {func.__name__} failed: {e}. "
                            f"Retrying in {current_delay:.1f}s"
                        )
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(f"All {max_attempts} attempts of {func.__name__} failed: {e}")

            raise last_exception

        return wrapper
    return decorator


class Stopwatch:
    """Measures elapsed time of a block in epoch milliseconds."""

    def __init__(self):
        self.start = now_ms()
        self.end: Optional[int] = None

    def stop(self) -> int:
        self.end = now_ms()
        return self.elapsed

    @property
    def elapsed(self) -> int:
        return (self.end or now_ms()) - self.start
