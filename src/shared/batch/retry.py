"""Retry helper for network operations with exponential backoff."""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

import httpx
from httpcore import LocalProtocolError, RemoteProtocolError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.LocalProtocolError,
    httpx.RemoteProtocolError,
    LocalProtocolError,
    RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)


def retry_on_network_error(
    func: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Retry a function on network/protocol errors with exponential backoff.

    Args:
        func: Callable to retry (should take no arguments)
        max_retries: Maximum number of attempts
        initial_delay: Initial delay in seconds (doubles each retry)
        max_delay: Upper bound for a single delay
        sleep: Sleep function, replaced in tests

    Returns:
        Function result

    Raises:
        Exception: Last exception if all retries fail; non-network errors
            are raised immediately

    Example:
        result = retry_on_network_error(
            lambda: client.table("batch_state").select("*").execute(),
            max_retries=3,
        )
    """
    attempts = max(1, max_retries)
    delay = initial_delay

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as e:
            if attempt >= attempts - 1:
                logger.error("Network error after %d attempts: %s", attempts, e)
                raise
            wait = min(delay, max_delay)
            logger.warning(
                "Network error (attempt %d/%d): %s. Retrying in %.1fs...",
                attempt + 1,
                attempts,
                e,
                wait,
            )
            sleep(wait)
            delay *= 2

    raise RuntimeError("Retry loop completed without result or exception")
