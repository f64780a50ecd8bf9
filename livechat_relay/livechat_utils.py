import asyncio
import logging
from functools import wraps
from typing import Optional

logger = logging.getLogger(__name__)


def backoff_delay(base_delay: float, attempt: int, backoff_factor: float = 2, max_delay: Optional[float] = None) -> float:
    """
    Delay before the next try after `attempt` consecutive failures (0 = no failure yet).

    :param base_delay: Delay used when nothing has failed
    :param attempt: Number of consecutive failures so far
    :param backoff_factor: Multiplier applied per failure
    :param max_delay: Upper bound for the returned delay, if any
    """
    delay = base_delay * (backoff_factor ** max(attempt, 0))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def retry_with_backoff(max_retries=3, initial_delay=5, backoff_factor=2, exceptions=(Exception,)):
    """
    A decorator that retries the decorated coroutine function with exponential backoff.

    :param max_retries: Maximum number of attempts before giving up
    :param initial_delay: Initial delay between attempts in seconds
    :param backoff_factor: Multiplier for delay after each failed attempt
    :param exceptions: Tuple of exceptions to catch and retry on
    """
    def decorator(func):
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"retry_with_backoff only wraps coroutine functions, got {func.__name__}")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries - 1:
                        logger.error(f"Max retries reached for {func.__name__}. Last error: {e}")
                        raise
                    delay = backoff_delay(initial_delay, attempt, backoff_factor)
                    logger.warning(f"Attempt {attempt + 1} for {func.__name__} failed: {e}. Retrying in {delay} seconds...")
                    await asyncio.sleep(delay)
        return wrapper
    return decorator


def normalize_hex_color(color: Optional[str]) -> Optional[str]:
    """Returns the colour as '#RRGGBB', or None when missing or not a 6-digit hex value."""
    if not color:
        return None
    hex_color = str(color).strip().lstrip("#")
    if len(hex_color) != 6:
        return None
    try:
        int(hex_color, 16)
    except ValueError:
        return None
    return f"#{hex_color.upper()}"
