"""API schemas."""

from quotedesk_core.api.schemas.queue import (
    ClaimLeadRequest,
    CompleteLeadRequest,
    LeadResponse,
    ListLeadsResponse,
    SaveAnalysisRequest,
    SkipLeadRequest,
    SyncResponse,
)
from quotedesk_core.api.schemas.training import (
    MatchedConversationResponse,
    MatchedConversationsResponse,
)

__all__ = [
    # Queue schemas
    "ClaimLeadRequest",
    "CompleteLeadRequest",
    "LeadResponse",
    "ListLeadsResponse",
    "SaveAnalysisRequest",
    "SkipLeadRequest",
    "SyncResponse",
    # Training schemas
    "MatchedConversationResponse",
    "MatchedConversationsResponse",
]
