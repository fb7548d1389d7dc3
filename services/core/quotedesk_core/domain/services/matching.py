"""Order to conversation matching.

For each commerce order the matcher finds the customer's messaging-CRM
conversation by phone number, then pulls the photos the customer sent
in the days before ordering and the chat around them.

Per order, in sequence:
1. Skip orders without a customer phone
2. Look the phone up in the ConversationIndex (no hit means no match)
3. Score the names; the score sets confidence but never rejects a match
4. Fetch messages and keep customer images sent before the order
5. Group the images in time; the newest group is representative
6. Collect text context around the representative group
7. Emit a MatchResult

Usage:
    matcher = OrderConversationMatcher(index=index, config=MatchingConfig())
    batch = await matcher.match_orders(orders, limit=50)
    for match in batch.matches:
        ...
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Iterable, Optional

from quotedesk_core.domain.services.conversation_index import ConversationIndex
from quotedesk_core.domain.services.image_grouping import (
    ImageGroup,
    group_images,
    images_before,
)
from quotedesk_core.domain.services.name_similarity import NameMatcher
from quotedesk_core.domain.services.phone import PhoneNormalizer
from quotedesk_core.providers.base import (
    ConversationMessage,
    ConversationRecord,
    ConversationSource,
    MessageType,
    OrderRecord,
    ProviderNotConfigured,
    ensure_utc,
)

logger = logging.getLogger(__name__)


# =============================================================================
# TYPES
# =============================================================================


class MatchConfidence(str, Enum):
    """Review priority of a phone-matched pair, derived from the name score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchStatus(str, Enum):
    """Outcome of matching a single order."""

    MATCHED = "matched"
    SKIPPED_NO_PHONE = "skipped_no_phone"
    UNMATCHED = "unmatched"
    SKIPPED_NO_IMAGES = "skipped_no_images"
    FAILED = "failed"


CONTEXT_MESSAGE_TYPES = frozenset({MessageType.TEXT, MessageType.TEMPLATE})


@dataclass(frozen=True)
class MatchingConfig:
    """Tunables for the matcher."""

    lookback: timedelta = timedelta(days=7)
    gap: timedelta = timedelta(minutes=120)
    context_window: timedelta = timedelta(minutes=60)
    context_limit: int = 10
    high_threshold: int = 70
    medium_threshold: int = 40
    concurrency: int = 4

    @classmethod
    def from_settings(cls, settings: Any) -> "MatchingConfig":
        return cls(
            lookback=timedelta(days=settings.image_lookback_days),
            gap=timedelta(minutes=settings.image_group_gap_minutes),
            context_window=timedelta(minutes=settings.context_window_minutes),
            context_limit=settings.context_message_limit,
            high_threshold=settings.confidence_high_threshold,
            medium_threshold=settings.confidence_medium_threshold,
            concurrency=settings.match_concurrency,
        )


@dataclass(frozen=True)
class MatchResult:
    """An order paired with its conversation and the photos behind it."""

    order: OrderRecord
    conversation: ConversationRecord
    confidence: MatchConfidence
    name_score: int
    image_group: ImageGroup
    image_groups: tuple[ImageGroup, ...] = ()
    context_messages: tuple[ConversationMessage, ...] = ()

    @property
    def images(self) -> tuple[ConversationMessage, ...]:
        return self.image_group.messages


@dataclass(frozen=True)
class MatchFailure:
    """An order whose matching raised; recorded instead of aborting the batch."""

    order_id: str
    order_name: str
    error: str


@dataclass(frozen=True)
class MatchOutcome:
    """Per-order result yielded by ``iter_matches``."""

    order: OrderRecord
    status: MatchStatus
    match: Optional[MatchResult] = None
    failure: Optional[MatchFailure] = None


@dataclass
class MatchStats:
    """Counts per outcome for one batch."""

    orders_total: int = 0
    matched: int = 0
    skipped_no_phone: int = 0
    unmatched: int = 0
    skipped_no_images: int = 0
    failed: int = 0

    def record(self, status: MatchStatus) -> None:
        self.orders_total += 1
        if status == MatchStatus.MATCHED:
            self.matched += 1
        elif status == MatchStatus.SKIPPED_NO_PHONE:
            self.skipped_no_phone += 1
        elif status == MatchStatus.UNMATCHED:
            self.unmatched += 1
        elif status == MatchStatus.SKIPPED_NO_IMAGES:
            self.skipped_no_images += 1
        else:
            self.failed += 1


@dataclass
class MatchBatchResult:
    """Matches, failures and counts for a batch of orders (input order)."""

    matches: list[MatchResult] = field(default_factory=list)
    failures: list[MatchFailure] = field(default_factory=list)
    stats: MatchStats = field(default_factory=MatchStats)


# =============================================================================
# HELPERS
# =============================================================================


def select_context_messages(
    messages: Iterable[ConversationMessage],
    anchor: datetime,
    window: timedelta,
    limit: int,
) -> list[ConversationMessage]:
    """Text and template messages within ``window`` of ``anchor``.

    Both directions are kept. Returned oldest first, at most ``limit``.
    """
    anchor = ensure_utc(anchor)
    nearby = [
        m
        for m in messages
        if m.type in CONTEXT_MESSAGE_TYPES
        and abs(ensure_utc(m.sent_at) - anchor) <= window
    ]
    nearby.sort(key=lambda m: (ensure_utc(m.sent_at), m.id))
    return nearby[: max(0, limit)]


# =============================================================================
# MATCHER
# =============================================================================


class OrderConversationMatcher:
    """Pairs commerce orders with messaging-CRM conversations.

    Phone equality is the only gate for a match. Name similarity only
    sets the confidence tier.
    """

    def __init__(
        self,
        index: ConversationIndex,
        source: Optional[ConversationSource] = None,
        config: Optional[MatchingConfig] = None,
        normalizer: Optional[PhoneNormalizer] = None,
        name_matcher: Optional[NameMatcher] = None,
    ):
        """Initialize the matcher.

        Args:
            index: Built conversation index used for phone lookups.
            source: Message source; defaults to the index's source.
            config: Matching tunables.
            normalizer: Phone normalizer; defaults to the index's.
            name_matcher: Name scorer.
        """
        self.index = index
        self.source = source if source is not None else index.source
        self.config = config or MatchingConfig()
        self.normalizer = normalizer or index.normalizer
        self.name_matcher = name_matcher or NameMatcher()

    def confidence_for(self, name_score: int) -> MatchConfidence:
        if name_score >= self.config.high_threshold:
            return MatchConfidence.HIGH
        if name_score >= self.config.medium_threshold:
            return MatchConfidence.MEDIUM
        return MatchConfidence.LOW

    # =========================================================================
    # SINGLE ORDER
    # =========================================================================

    async def match_order(self, order: OrderRecord) -> Optional[MatchResult]:
        """Match one order.

        Returns:
            The match, or None when the order is skipped or unmatched.

        Raises:
            ProviderNotConfigured: If messages are needed and there is no source.
            UpstreamFailure: If fetching messages fails.
        """
        _, match = await self._match(order)
        return match

    async def _match(
        self, order: OrderRecord
    ) -> tuple[MatchStatus, Optional[MatchResult]]:
        if not self.normalizer.normalize(order.customer_phone):
            return MatchStatus.SKIPPED_NO_PHONE, None

        conversation = self.index.lookup(order.customer_phone)
        if conversation is None or not self.normalizer.matches(
            order.customer_phone, conversation.phone
        ):
            return MatchStatus.UNMATCHED, None

        name_score = self.name_matcher.score_order_customer(
            conversation.display_name,
            order.customer_first_name,
            order.customer_last_name,
        )
        confidence = self.confidence_for(name_score)

        messages = await self._messages_for(conversation)
        images = images_before(messages, order.created_at, self.config.lookback)
        if not images:
            return MatchStatus.SKIPPED_NO_IMAGES, None

        groups = group_images(images, gap=self.config.gap)
        representative = groups[-1]
        context = select_context_messages(
            messages,
            anchor=representative.first_at,
            window=self.config.context_window,
            limit=self.config.context_limit,
        )

        return MatchStatus.MATCHED, MatchResult(
            order=order,
            conversation=conversation,
            confidence=confidence,
            name_score=name_score,
            image_group=representative,
            image_groups=tuple(reversed(groups)),
            context_messages=tuple(context),
        )

    async def _messages_for(
        self, conversation: ConversationRecord
    ) -> list[ConversationMessage]:
        if conversation.messages:
            return list(conversation.messages)
        if self.source is None:
            raise ProviderNotConfigured("No conversation source configured")
        return await self.source.get_messages(conversation.id)

    async def _evaluate(self, order: OrderRecord) -> MatchOutcome:
        try:
            status, match = await self._match(order)
        except ProviderNotConfigured:
            raise
        except Exception as e:
            logger.warning("Matching failed for order %s: %s", order.name, e)
            return MatchOutcome(
                order=order,
                status=MatchStatus.FAILED,
                failure=MatchFailure(order_id=order.id, order_name=order.name, error=str(e)),
            )
        return MatchOutcome(order=order, status=status, match=match)

    # =========================================================================
    # BATCH
    # =========================================================================

    async def iter_matches(
        self,
        orders: Iterable[OrderRecord],
        limit: Optional[int] = None,
    ) -> AsyncIterator[MatchOutcome]:
        """Match orders concurrently, yielding outcomes in input order.

        At most ``config.concurrency`` orders are in flight. Closing the
        iterator early cancels the orders still running.
        """
        selected = list(orders)
        if limit is not None:
            selected = selected[: max(0, limit)]

        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def run(order: OrderRecord) -> MatchOutcome:
            async with semaphore:
                return await self._evaluate(order)

        tasks = [asyncio.ensure_future(run(order)) for order in selected]
        try:
            for task in tasks:
                yield await task
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            # Retrieve every outcome so no task exception goes unobserved
            await asyncio.gather(*tasks, return_exceptions=True)

    async def match_orders(
        self,
        orders: Iterable[OrderRecord],
        limit: Optional[int] = None,
    ) -> MatchBatchResult:
        """Match a batch of orders.

        A failure on one order is recorded in ``failures`` and the batch
        continues. ``ProviderNotConfigured`` aborts the batch.
        """
        batch = MatchBatchResult()
        async for outcome in self.iter_matches(orders, limit=limit):
            batch.stats.record(outcome.status)
            if outcome.match is not None:
                batch.matches.append(outcome.match)
            elif outcome.failure is not None:
                batch.failures.append(outcome.failure)

        logger.info(
            "Matched %d of %d orders (%d unmatched, %d without images, %d failed)",
            batch.stats.matched,
            batch.stats.orders_total,
            batch.stats.unmatched,
            batch.stats.skipped_no_images,
            batch.stats.failed,
        )
        return batch
