"""Infrastructure components for QuoteDesk.

This package contains infrastructure-level components like:
- Retry with exponential backoff for collaborator HTTP calls
"""

from quotedesk_core.infrastructure.retry import (
    BackoffStrategy,
    RetryableStatus,
    raise_for_retryable_status,
    retry_async,
)

__all__ = [
    "BackoffStrategy",
    "RetryableStatus",
    "raise_for_retryable_status",
    "retry_async",
]
