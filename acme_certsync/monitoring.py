"""
Simple monitoring utilities.
"""

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def timer(operation_name: str, log: logging.Logger | None = None):
    """
    Log how long the enclosed block took.

    Usage:
        with timer("Renewal check"):
            # do work
    """
    log = log or logger
    start = time.monotonic()
    log.debug(f"Starting: {operation_name}")

    try:
        yield
    finally:
        elapsed = time.monotonic() - start
        log.info(f"{operation_name} completed in {elapsed:.2f}s")
