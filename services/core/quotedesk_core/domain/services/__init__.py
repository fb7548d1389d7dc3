"""Domain services for QuoteDesk."""

from quotedesk_core.domain.services.conversation_index import ConversationIndex, IndexSnapshot
from quotedesk_core.domain.services.lead_queue import (
    AlreadyClaimed,
    InvalidTransition,
    LeadNotFound,
    LeadQueueService,
)
from quotedesk_core.domain.services.matching import (
    MatchConfidence,
    MatchingConfig,
    MatchResult,
    OrderConversationMatcher,
)
from quotedesk_core.domain.services.queue_sync import QueueSyncService, SyncResult
from quotedesk_core.domain.services.training import DatabaseTrainingSink, TrainingSink

__all__ = [
    "AlreadyClaimed",
    "ConversationIndex",
    "DatabaseTrainingSink",
    "IndexSnapshot",
    "InvalidTransition",
    "LeadNotFound",
    "LeadQueueService",
    "MatchConfidence",
    "MatchingConfig",
    "MatchResult",
    "OrderConversationMatcher",
    "QueueSyncService",
    "SyncResult",
    "TrainingSink",
]
