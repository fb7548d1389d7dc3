"""Collaborator adapters for QuoteDesk Core."""

from quotedesk_core.providers.base import (
    ConversationMessage,
    ConversationPage,
    ConversationRecord,
    ConversationSource,
    MessageDirection,
    MessageType,
    OrderLineItem,
    OrderRecord,
    OrderSource,
    ProviderError,
    ProviderNotConfigured,
    UpstreamFailure,
)

__all__ = [
    "ConversationMessage",
    "ConversationPage",
    "ConversationRecord",
    "ConversationSource",
    "MessageDirection",
    "MessageType",
    "OrderLineItem",
    "OrderRecord",
    "OrderSource",
    "ProviderError",
    "ProviderNotConfigured",
    "UpstreamFailure",
]
