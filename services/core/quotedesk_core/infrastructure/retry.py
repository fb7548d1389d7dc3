"""Retry with exponential backoff for collaborator API calls.

Implements:
- Exponential backoff with jitter
- Longer waits for rate limiting (429) and honouring ``Retry-After``
- An async retry loop used by the provider adapters

Usage:
    strategy = BackoffStrategy(max_attempts=3)

    async def call():
        response = await client.get(url)
        raise_for_retryable_status(response)
        return response

    response = await retry_async(call, strategy)
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetryableStatus(Exception):
    """Raised for a response status worth retrying."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        retry_after: Optional[float] = None,
    ):
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code
        self.retry_after = retry_after


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def raise_for_retryable_status(response: httpx.Response) -> None:
    """Raise RetryableStatus if ``response`` has a transient error status."""
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise RetryableStatus(
            response.status_code,
            f"HTTP {response.status_code}: {response.text[:200]}",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )


@dataclass
class BackoffStrategy:
    """Exponential backoff strategy for retries.

    Attributes:
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay in seconds.
        multiplier: Multiplier for exponential increase.
        jitter: Whether to add random jitter.
        max_attempts: Total attempts including the first call.
    """

    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    max_attempts: int = 3

    # Minimum delays for specific status codes
    status_delays: dict[int, float] = field(default_factory=lambda: {
        429: 5.0,
        503: 2.0,
    })

    def get_delay(self, attempt: int) -> float:
        """Calculate delay after a failed attempt.

        Args:
            attempt: The attempt number that failed (1-based).

        Returns:
            Delay in seconds before the next attempt.
        """
        delay = self.base_delay * (self.multiplier ** (attempt - 1))

        if self.jitter:
            # +/- 25% jitter before capping
            jitter_range = delay * 0.25
            delay = delay + random.uniform(-jitter_range, jitter_range)

        return max(0.0, min(delay, self.max_delay))

    def get_delay_for_error(self, error: Exception, attempt: int) -> float:
        delay = self.get_delay(attempt)
        if isinstance(error, RetryableStatus):
            if error.retry_after is not None:
                return min(error.retry_after, self.max_delay)
            delay = max(delay, self.status_delays.get(error.status_code, 0.0))
        return min(delay, self.max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    strategy: Optional[BackoffStrategy] = None,
    retry_on: tuple[type[BaseException], ...] = (httpx.TransportError, RetryableStatus),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "request",
) -> T:
    """Call ``func`` until it succeeds or the attempts are exhausted.

    Args:
        func: Zero-argument coroutine function performing one attempt.
        strategy: Backoff configuration.
        retry_on: Exception types that trigger a retry.
        sleep: Awaitable sleep, replaceable in tests.
        description: Label used in log messages.

    Returns:
        The first successful result.

    Raises:
        The last retryable exception once attempts are exhausted; any
        non-retryable exception immediately.
    """
    strategy = strategy or BackoffStrategy()
    attempts = max(1, strategy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= attempts:
                raise
            delay = strategy.get_delay_for_error(e, attempt)
            logger.info(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                attempt,
                attempts,
                e,
                delay,
            )
            await sleep(delay)

    raise RuntimeError("Unexpected retry state")
