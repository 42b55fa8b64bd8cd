"""Poll-with-timeout helper used instead of fixed settle delays."""
from __future__ import annotations

import time
from typing import Callable, TypeVar

T = TypeVar("T")


def wait_for(
    probe: Callable[[], T | None],
    *,
    timeout: float,
    interval: float = 0.25,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T | None:
    """Call ``probe`` until it returns something truthy or ``timeout`` elapses.

    Returns the last probe result (``None``/falsy on timeout); the caller
    decides what "not found" means.
    """
    deadline = clock() + timeout
    while True:
        result = probe()
        if result:
            return result
        if clock() >= deadline:
            return result
        sleep(interval)
