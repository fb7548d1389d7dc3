"""API routes."""

from quotedesk_core.api.routes import queue, training

__all__ = ["queue", "training"]
