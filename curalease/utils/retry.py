"""Retry helper for transient store failures."""

import logging
import time
from functools import wraps
from typing import Callable, TypeVar

from curalease.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_unavailable(max_retries: int = 3, delay: float = 0.2, backoff: float = 2.0):
    """Decorator to retry a function on StoreUnavailableError with exponential backoff.

    Any other exception propagates immediately. After the last attempt the
    StoreUnavailableError is re-raised; it is never converted into success.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            wait = delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except StoreUnavailableError as e:
                    if attempt >= max_retries:
                        raise
                    logger.warning(
                        "Store unavailable in %s (attempt %d/%d): %s. Retrying in %.2fs",
                        func.__name__, attempt + 1, max_retries + 1, e, wait,
                    )
                    time.sleep(wait)
                    wait *= backoff
            raise AssertionError("unreachable")
        return wrapper
    return decorator
