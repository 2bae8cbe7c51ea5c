"""Retry with exponential backoff for transient upstream failures."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from qbconductor_mcp.exceptions import ConductorError, ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Kinds that will fail the same way on every attempt
NON_RETRYABLE_KINDS = frozenset({
    ErrorKind.VALIDATION,
    ErrorKind.AUTHENTICATION,
    ErrorKind.PERMISSION,
    ErrorKind.NOT_FOUND,
})


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient.

    Retryable: upstream unavailable, rate limited, connectivity failures
    (no HTTP response) and any 5xx status.
    """
    if isinstance(error, ConductorError):
        if error.kind in (ErrorKind.UPSTREAM_UNAVAILABLE, ErrorKind.RATE_LIMIT):
            return True
        if error.is_connectivity_error:
            return True
        return error.status_code is not None and error.status_code >= 500

    if isinstance(error, httpx.TransportError):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500

    return False


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with up to ``max_retries`` retries.

    Waits ``base_delay * 2**attempt`` seconds between attempts. Validation,
    authentication, permission and not-found errors are raised immediately.

    Args:
        operation: Zero-argument coroutine factory.
        max_retries: Retries after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        sleep: Awaitable sleep function.

    Returns:
        The operation's result.
    """
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            if isinstance(e, ConductorError) and e.kind in NON_RETRYABLE_KINDS:
                raise
            if attempt >= max_retries:
                raise

            delay = base_delay * 2 ** attempt
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay:.1f}s: {e}")

        await sleep(delay)
        attempt += 1
