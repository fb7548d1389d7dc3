"""Queue sync: turn CRM conversations into leads.

Two feeds fill the queue:

- ``sync_from_orders``: recent commerce orders matched back to the chat
  where the customer sent photos before ordering.
- ``sync_recent_conversations``: customers who sent photos recently but
  have not ordered yet (inbound leads).

Both are idempotent; re-running a sync never duplicates a lead. Sync
always reports partial counts: a failure on one order or conversation
is counted and the run continues.

Usage:
    service = QueueSyncService(db=session, index=index, order_source=shopify)
    result = await service.sync_from_orders(days_back=7, limit=500)
    print(result.created, result.failed)
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from quotedesk_core.domain.models import LeadSource
from quotedesk_core.domain.services.conversation_index import ConversationIndex
from quotedesk_core.domain.services.image_grouping import (
    customer_images_since,
    group_images,
)
from quotedesk_core.domain.services.lead_queue import LeadQueueService
from quotedesk_core.domain.services.matching import (
    MatchingConfig,
    OrderConversationMatcher,
    select_context_messages,
)
from quotedesk_core.providers.base import (
    OrderSource,
    ProviderNotConfigured,
    UpstreamFailure,
    ensure_utc,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Counts reported by a queue sync run."""

    mode: str
    orders_fetched: int = 0
    conversations_scanned: int = 0
    matched: int = 0
    unmatched: int = 0
    skipped_no_phone: int = 0
    skipped_no_images: int = 0
    skipped_recent_order: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    index_size: int = 0
    index_complete: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QueueSyncService:
    """Fills the lead queue from the conversation index."""

    def __init__(
        self,
        db: Session,
        index: ConversationIndex,
        order_source: Optional[OrderSource] = None,
        config: Optional[MatchingConfig] = None,
        lead_queue: Optional[LeadQueueService] = None,
    ):
        self.db = db
        self.index = index
        self.order_source = order_source
        self.config = config or MatchingConfig()
        self.lead_queue = lead_queue or LeadQueueService(db)

    async def _build_index(self, result: SyncResult, force_refresh: bool) -> None:
        """Build the index, recording (not raising) upstream failures."""
        try:
            await self.index.build(force_refresh=force_refresh)
        except UpstreamFailure as e:
            result.error = str(e)
            result.index_complete = False
        result.index_size = self.index.size

    # =========================================================================
    # ORDER MATCHES
    # =========================================================================

    async def sync_from_orders(
        self,
        days_back: int = 7,
        limit: int = 500,
        force_refresh: bool = False,
    ) -> SyncResult:
        """Queue the photos behind recently placed orders.

        Raises:
            ProviderNotConfigured: If either collaborator lacks credentials.
        """
        result = SyncResult(mode="orders")

        if self.order_source is None:
            raise ProviderNotConfigured("No order source configured")

        await self._build_index(result, force_refresh)
        if result.index_size == 0 and result.error:
            return result

        try:
            orders = await self.order_source.list_recent_orders(
                days_back=days_back, limit=limit
            )
        except UpstreamFailure as e:
            result.error = f"Order fetch failed: {e}"
            logger.warning("Queue sync aborted: %s", result.error)
            return result
        result.orders_fetched = len(orders)

        matcher = OrderConversationMatcher(index=self.index, config=self.config)
        batch = await matcher.match_orders(orders)

        result.matched = batch.stats.matched
        result.unmatched = batch.stats.unmatched
        result.skipped_no_phone = batch.stats.skipped_no_phone
        result.skipped_no_images = batch.stats.skipped_no_images
        result.failed = batch.stats.failed
        result.failures = [asdict(f) for f in batch.failures]

        for match in batch.matches:
            if self.lead_queue.create_from_match(match):
                result.created += 1
            else:
                result.skipped += 1

        logger.info(
            "Order sync: %d orders, %d matched, %d leads created, %d already queued, %d failed",
            result.orders_fetched,
            result.matched,
            result.created,
            result.skipped,
            result.failed,
        )
        return result

    # =========================================================================
    # INBOUND CONVERSATIONS
    # =========================================================================

    async def _recently_ordered_phone_keys(
        self, result: SyncResult, days_back: int, limit: int
    ) -> set[str]:
        if self.order_source is None:
            return set()
        try:
            orders = await self.order_source.list_recent_orders(
                days_back=days_back, limit=limit
            )
        except UpstreamFailure as e:
            # Without orders every recent customer is queued
            error = f"Order fetch failed: {e}"
            result.error = f"{result.error}; {error}" if result.error else error
            logger.warning("Recent-order dedupe disabled: %s", error)
            return set()

        keys = set()
        for order in orders:
            key = self.index.normalizer.normalize(order.customer_phone)
            if key:
                keys.add(key)
        return keys

    async def sync_recent_conversations(
        self,
        lookback_days: int = 7,
        force_refresh: bool = True,
        orders_limit: int = 500,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Queue photo bursts from customers active in the lookback window.

        Customers who placed an order in the same window are skipped; the
        order feed covers them. If the orders cannot be fetched, nobody is
        skipped and the failure is reported in ``error``.

        Raises:
            ProviderNotConfigured: If the conversation source lacks credentials.
        """
        result = SyncResult(mode="conversations")
        source = self.index.source
        if source is None:
            raise ProviderNotConfigured("No conversation source configured")

        threshold = ensure_utc(now or datetime.now(timezone.utc)) - timedelta(
            days=lookback_days
        )

        await self._build_index(result, force_refresh)
        if result.index_size == 0 and result.error:
            return result

        ordered_keys = await self._recently_ordered_phone_keys(
            result, lookback_days, orders_limit
        )

        recent = [
            c
            for c in self.index.conversations()
            if c.last_incoming_message_at is not None
            and ensure_utc(c.last_incoming_message_at) >= threshold
        ]
        recent.sort(key=lambda c: ensure_utc(c.last_incoming_message_at), reverse=True)

        for conversation in recent:
            result.conversations_scanned += 1

            phone_key = self.index.normalizer.normalize(conversation.phone)
            if phone_key and phone_key in ordered_keys:
                result.skipped_recent_order += 1
                continue

            try:
                messages = await source.get_messages(conversation.id)
            except ProviderNotConfigured:
                raise
            except Exception as e:
                logger.warning(
                    "Could not fetch messages for conversation %s: %s", conversation.id, e
                )
                result.failed += 1
                result.failures.append(
                    {"conversation_id": conversation.id, "error": str(e)}
                )
                continue

            images = customer_images_since(messages, threshold)
            for group in group_images(images, gap=self.config.gap):
                context = select_context_messages(
                    messages,
                    anchor=group.first_at,
                    window=self.config.context_window,
                    limit=self.config.context_limit,
                )
                created = self.lead_queue.create_from_group(
                    conversation=conversation,
                    group=group,
                    context_messages=context,
                    source=LeadSource.CONVERSATION,
                )
                if created:
                    result.created += 1
                else:
                    result.skipped += 1

        logger.info(
            "Conversation sync: %d active customers, %d leads created, "
            "%d already queued, %d with recent orders, %d failed",
            result.conversations_scanned,
            result.created,
            result.skipped,
            result.skipped_recent_order,
            result.failed,
        )
        return result
