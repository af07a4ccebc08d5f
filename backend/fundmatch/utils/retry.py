"""
Retry utility with exponential backoff for AI provider calls.
"""

import time
import logging
from typing import Callable, TypeVar, Optional
from functools import wraps

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        exceptions: Tuple of exceptions to catch
        should_retry: Optional predicate; a caught exception for which it
            returns False is re-raised immediately
        sleep: Sleep function (injectable for tests)

    Example:
        @retry_with_backoff(max_retries=3, should_retry=is_transient)
        def call_provider():
            return client.messages.create(...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            name = getattr(func, "__name__", repr(func))

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"All {max_retries + 1} attempts failed for {name}: {str(e)}"
                        )
                        raise

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries + 1} failed for {name}: {str(e)}. "
                        f"Retrying in {delay:.2f} seconds..."
                    )
                    sleep(delay)
                    delay = min(delay * exponential_base, max_delay)

            # Unreachable: the loop either returns or raises
            raise RuntimeError(f"retry loop exited without result for {name}")

        return wrapper
    return decorator
