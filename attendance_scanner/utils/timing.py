"""
Timing utilities.

Helper functions for time-related operations.
"""

import time
from typing import Callable, Tuple, Type, TypeVar

from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def format_uptime(seconds: float) -> str:
    """
    Format uptime in human-readable format.

    Args:
        seconds: Uptime in seconds

    Returns:
        Formatted string (e.g., "1d 2h 30m 45s")
    """
    seconds = int(seconds)

    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f'{days}d')
    if hours:
        parts.append(f'{hours}h')
    if minutes:
        parts.append(f'{minutes}m')
    parts.append(f'{secs}s')

    return ' '.join(parts)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 2,
    initial_delay: float = 0.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)
) -> T:
    """
    Call func, retrying on the given exceptions.

    The defaults retry once without waiting, which keeps a sampling tick
    from stalling on a flaky backend.

    Args:
        func: Function to call
        max_attempts: Maximum number of attempts
        initial_delay: Delay before the first retry in seconds
        backoff_factor: Delay multiplier between retries
        exceptions: Exception types that trigger a retry

    Returns:
        Function result

    Raises:
        The last exception if all attempts fail
    """
    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except exceptions as e:
            if attempt == max_attempts:
                raise
            logger.warning(f'Attempt {attempt}/{max_attempts} failed: {e}, retrying')
            if delay > 0:
                time.sleep(delay)
            delay *= backoff_factor

    raise RuntimeError('max_attempts must be at least 1')
