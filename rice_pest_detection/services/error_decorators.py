"""Error handling decorators for the rice pest detection system."""

import asyncio
import functools
import inspect
import logging
import time
from typing import Optional, Tuple, Type

from ..logging_config import get_logger, log_performance

logger = get_logger("error_decorators")


def retry_async(max_attempts: int = 3, delay: float = 0.5, backoff_factor: float = 2.0,
                exceptions: Optional[Tuple[Type[BaseException], ...]] = None):
    """Decorator to retry a coroutine function with exponential backoff.

    Args:
        max_attempts: Total number of attempts, including the first
        delay: Delay before the second attempt in seconds
        backoff_factor: Factor to increase delay with each retry
        exceptions: Exception types that trigger a retry

    Returns:
        Decorated coroutine function that re-raises the last failure
    """
    exceptions_to_catch = exceptions or (Exception,)

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions_to_catch as e:
                    last_exception = e
                    logger.warning(f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {e}")

                    # Don't sleep on the last attempt
                    if attempt < max_attempts:
                        sleep_time = delay * (backoff_factor ** (attempt - 1))
                        logger.debug(f"Retrying in {sleep_time:.2f} seconds")
                        await asyncio.sleep(sleep_time)

            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
            raise last_exception
        return wrapper
    return decorator


def log_execution_time(logger_name: Optional[str] = None, level: int = logging.DEBUG,
                       performance: bool = False):
    """Decorator to log function execution time.

    Works on both plain and coroutine functions. With ``performance`` set the
    timing is also written to the performance log.
    """
    def decorator(func):
        def _report(start_time: float) -> None:
            execution_time = time.perf_counter() - start_time
            log = get_logger(logger_name or func.__module__.rsplit(".", 1)[-1])
            log.log(level, f"Function {func.__name__} executed in {execution_time:.4f} seconds")
            if performance:
                log_performance(func.__qualname__, {"duration_ms": round(execution_time * 1000, 2)})

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(start_time)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _report(start_time)
        return wrapper
    return decorator
