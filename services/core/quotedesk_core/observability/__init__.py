"""Observability package for logging."""

from quotedesk_core.observability.logging import (
    StructuredLogger,
    JsonFormatter,
    RequestContext,
    get_logger,
    configure_logging,
)

__all__ = [
    "StructuredLogger",
    "JsonFormatter",
    "RequestContext",
    "get_logger",
    "configure_logging",
]
