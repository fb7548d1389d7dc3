"""Phone-keyed index over messaging-CRM conversations.

Listing the CRM is paginated and slow, so the whole customer list is
loaded once and cached for ``ttl_seconds``. Every conversation is stored
under each of its phone search variants and its PhoneKey, which lets an
order phone in any format find it with a dictionary lookup.

The index object is owned by its caller (the API process holds one, each
worker task builds its own) and is injected into the matcher.

Usage:
    index = ConversationIndex(source=zoko_adapter, ttl_seconds=3600)
    snapshot = await index.build()
    conversation = index.lookup("+971 50 123 4567")
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from quotedesk_core.domain.services.phone import PhoneNormalizer
from quotedesk_core.providers.base import (
    ConversationRecord,
    ConversationSource,
    ProviderError,
    ProviderNotConfigured,
    UpstreamFailure,
)

logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS = 3600

# Upper bound on pages fetched in one build
MAX_PAGES = 1000


@dataclass(frozen=True)
class IndexSnapshot:
    """Outcome of the most recent build."""

    size: int
    built_at: datetime
    complete: bool = True
    error: Optional[str] = None


class ConversationIndex:
    """Cached phone -> conversation lookup table.

    Builds replace the whole map in a single reference swap, so readers
    calling ``lookup`` always see either the previous or the new map.
    Concurrent ``build`` calls are serialized; a caller arriving while a
    build runs reuses its result.
    """

    def __init__(
        self,
        source: Optional[ConversationSource] = None,
        normalizer: Optional[PhoneNormalizer] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.normalizer = normalizer or PhoneNormalizer()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

        self._by_phone: dict[str, ConversationRecord] = {}
        self._snapshot: Optional[IndexSnapshot] = None
        self._built_at_monotonic: Optional[float] = None
        self._generation = 0

    # =========================================================================
    # BUILD
    # =========================================================================

    def is_fresh(self) -> bool:
        """True when a complete snapshot exists and is younger than the TTL."""
        if self._snapshot is None or self._built_at_monotonic is None:
            return False
        if not self._snapshot.complete:
            return False
        return self._clock() - self._built_at_monotonic < self.ttl_seconds

    async def build(self, force_refresh: bool = False) -> IndexSnapshot:
        """Load every conversation from the source and swap in a new map.

        Args:
            force_refresh: Rebuild even if the cached snapshot is fresh.

        Returns:
            The snapshot describing the map now in use.

        Raises:
            ProviderNotConfigured: If a load is needed and there is no source,
                or the source lacks credentials.
            UpstreamFailure: If a page fails. Pages loaded before the failure
                are still swapped in, with ``complete=False``.
        """
        if not force_refresh and self.is_fresh():
            return self._snapshot

        if self.source is None:
            # A seeded index has nothing to reload from
            if not force_refresh and self._snapshot is not None:
                return self._snapshot
            raise ProviderNotConfigured("No conversation source configured")

        generation = self._generation
        async with self._lock:
            # Another caller finished a build while we waited
            if self._generation != generation and self._snapshot is not None:
                if self._snapshot.error:
                    raise UpstreamFailure(self._snapshot.error, self.source.provider_id)
                return self._snapshot

            return await self._build_locked()

    async def _build_locked(self) -> IndexSnapshot:
        by_phone: dict[str, ConversationRecord] = {}
        distinct = 0
        error: Optional[str] = None

        page = 1
        total_pages = 1
        try:
            while page <= total_pages and page <= MAX_PAGES:
                result = await self.source.list_conversations_page(page)
                total_pages = result.total_pages
                for conversation in result.conversations:
                    if self._insert(by_phone, conversation):
                        distinct += 1
                page += 1
        except ProviderNotConfigured:
            raise
        except ProviderError as e:
            error = f"Conversation listing failed on page {page}: {e}"
        except Exception as e:
            error = f"Conversation listing failed on page {page}: {type(e).__name__}: {e}"

        snapshot = IndexSnapshot(
            size=distinct,
            built_at=datetime.now(timezone.utc),
            complete=error is None,
            error=error,
        )
        self._by_phone = by_phone
        self._snapshot = snapshot
        self._built_at_monotonic = self._clock()
        self._generation += 1

        if error:
            logger.warning(
                "Conversation index partially built: %d conversations, %s",
                distinct,
                error,
            )
            raise UpstreamFailure(error, self.source.provider_id)

        logger.info(
            "Conversation index built: %d conversations over %d pages",
            distinct,
            page - 1,
        )
        return snapshot

    def _insert(
        self,
        by_phone: dict[str, ConversationRecord],
        conversation: ConversationRecord,
    ) -> bool:
        """Add ``conversation`` under all its phone forms; False if none are new."""
        keys = list(self.normalizer.search_variants(conversation.phone))
        phone_key = self.normalizer.normalize(conversation.phone)
        if phone_key and phone_key not in keys:
            keys.append(phone_key)
        if not keys:
            return False

        added = False
        for key in keys:
            # First conversation listed for a phone wins
            if key not in by_phone:
                by_phone[key] = conversation
                added = True
        return added

    def seed(self, conversations: Iterable[ConversationRecord]) -> IndexSnapshot:
        """Install a pre-built index without calling the source."""
        by_phone: dict[str, ConversationRecord] = {}
        distinct = sum(1 for c in conversations if self._insert(by_phone, c))
        snapshot = IndexSnapshot(size=distinct, built_at=datetime.now(timezone.utc))
        self._by_phone = by_phone
        self._snapshot = snapshot
        self._built_at_monotonic = self._clock()
        self._generation += 1
        return snapshot

    def invalidate(self) -> None:
        """Drop the cached map; the next ``build`` reloads from the source."""
        self._by_phone = {}
        self._snapshot = None
        self._built_at_monotonic = None

    # =========================================================================
    # READ
    # =========================================================================

    def lookup(self, phone: Optional[str]) -> Optional[ConversationRecord]:
        """Find the conversation for ``phone`` in any supported format."""
        by_phone = self._by_phone
        if not phone or not by_phone:
            return None

        for variant in self.normalizer.search_variants(phone):
            conversation = by_phone.get(variant)
            if conversation is not None:
                return conversation

        phone_key = self.normalizer.normalize(phone)
        if phone_key:
            return by_phone.get(phone_key)
        return None

    def conversations(self) -> list[ConversationRecord]:
        """Distinct conversations in the current map, in insertion order."""
        seen: set[str] = set()
        result: list[ConversationRecord] = []
        for conversation in self._by_phone.values():
            if conversation.id not in seen:
                seen.add(conversation.id)
                result.append(conversation)
        return result

    @property
    def snapshot(self) -> Optional[IndexSnapshot]:
        return self._snapshot

    @property
    def size(self) -> int:
        return self._snapshot.size if self._snapshot else 0
