"""
Bounded retry with a pluggable backoff.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def linear_backoff(step: float) -> Callable[[int], float]:
    """
    Backoff that waits ``attempt * step`` seconds after the given failed attempt.

    With ``step=0.3`` the waits are 0.3, 0.6, 0.9, ... seconds.
    """

    def backoff(attempt: int) -> float:
        return attempt * step

    return backoff


def retry(
    fn: Callable[[], T],
    attempts: int,
    backoff: Callable[[int], float],
    retry_on: type[BaseException] | tuple[type[BaseException], ...] = Exception,
    sleep: Callable[[float], None] = time.sleep,
    log: logging.Logger | None = None,
) -> T:
    """
    Call ``fn`` until it succeeds, at most ``attempts`` times.

    After failed attempt ``n`` (1-based) the call sleeps ``backoff(n)`` seconds,
    except after the last attempt, whose exception is re-raised unchanged.
    Exceptions that are not instances of ``retry_on`` propagate immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    log = log or logger
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt >= attempts:
                raise
            delay = backoff(attempt)
            log.debug(f"Attempt {attempt}/{attempts} failed ({e}), retrying in {delay:.1f}s")
            sleep(delay)

    raise AssertionError("unreachable")
