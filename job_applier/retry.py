"""Retry decorator with exponential backoff (stdlib only).

Only for transport-level hiccups (page navigation). A Job is never retried:
once an extraction, analysis or submission fails the Job is skipped.
"""
from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def retry(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] | None = None,
) -> Callable:
    """Decorator: re-invoke the wrapped call on ``retryable`` errors, then re-raise."""

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            pause = sleep or time.sleep
            for attempt in range(1, max_attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except retryable as exc:
                    if attempt == max_attempts:
                        logger.error("%s gave up after %d attempts: %s", fn.__qualname__, max_attempts, exc)
                        raise
                    delay = min(base_delay * (backoff_factor ** (attempt - 1)), max_delay)
                    if jitter:
                        delay *= 0.5 + random.random()
                    logger.warning(
                        "%s attempt %d/%d failed (%s), retrying in %.1fs",
                        fn.__qualname__, attempt, max_attempts, exc, delay,
                    )
                    pause(delay)
            raise RuntimeError("unreachable")

        return wrapper

    return decorator
