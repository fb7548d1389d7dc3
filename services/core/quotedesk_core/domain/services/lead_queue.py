"""Shared lead queue for staff quoting work.

Leads move through:

    new -> claimed -> analyzed -> quoted -> completed
    new | claimed -> skipped

``completed`` and ``skipped`` are terminal. Every state change is a
single conditional UPDATE guarded by the allowed source states, so two
staff members racing on the same lead cannot both win. ``claim`` is the
test-and-set that hands out exclusive ownership.

The service flushes but never commits; the caller owns the transaction.

Usage:
    service = LeadQueueService(db=session)

    created = service.create_from_match(match)
    lead = service.claim(lead_id, staff_id="alice")
    service.save_analysis(lead_id, product_groups)
    service.complete(lead_id, draft_order_id="gid://shopify/DraftOrder/1")
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotedesk_core.domain.models import (
    LeadSource,
    LeadStatus,
    QueueLead,
    to_naive_utc,
    utcnow,
)
from quotedesk_core.domain.schemas.analysis import (
    ProductTrainingData,
    SavedProductGroup,
)
from quotedesk_core.domain.services.image_grouping import ImageGroup
from quotedesk_core.domain.services.matching import MatchResult
from quotedesk_core.domain.services.phone import normalize_phone
from quotedesk_core.providers.base import ConversationMessage, ConversationRecord

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================


# States held by a claimant
CLAIMED_STATES = (LeadStatus.CLAIMED, LeadStatus.ANALYZED, LeadStatus.QUOTED)

TERMINAL_STATES = (LeadStatus.COMPLETED, LeadStatus.SKIPPED)

SKIPPABLE_STATES = (LeadStatus.NEW, LeadStatus.CLAIMED)

# complete_without_claim bypasses the claim, nothing else
UNCLAIMED_COMPLETABLE_STATES = (LeadStatus.NEW,) + CLAIMED_STATES

MAX_LIST_LIMIT = 200


# =============================================================================
# EXCEPTIONS
# =============================================================================


class LeadQueueError(Exception):
    """Base exception for lead queue operations."""

    def __init__(self, message: str, lead_id: Optional[int] = None):
        super().__init__(message)
        self.lead_id = lead_id


class LeadNotFound(LeadQueueError):
    """Raised when a lead does not exist."""

    def __init__(self, lead_id: int):
        super().__init__(f"Lead {lead_id} not found", lead_id)


class AlreadyClaimed(LeadQueueError):
    """Raised when another staff member holds the lead."""

    def __init__(self, lead_id: int, holder: Optional[str]):
        super().__init__(f"Lead {lead_id} was taken by {holder}", lead_id)
        self.holder = holder


class InvalidTransition(LeadQueueError):
    """Raised when a state change is not allowed from the lead's current state."""

    def __init__(self, lead_id: int, attempted: str, actual: str):
        super().__init__(
            f"Cannot {attempted} lead {lead_id} in status '{actual}'", lead_id
        )
        self.attempted = attempted
        self.actual = actual


# =============================================================================
# HELPERS
# =============================================================================


def compute_image_set_key(message_ids: Iterable[str]) -> str:
    """Stable dedupe key for a set of image messages (order-insensitive)."""
    key_data = json.dumps(sorted(set(message_ids)))
    return hashlib.sha256(key_data.encode()).hexdigest()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_image(message: ConversationMessage) -> dict[str, Any]:
    return {
        "url": message.media_url,
        "message_id": message.id,
        "timestamp": _iso(message.sent_at),
        "caption": message.caption,
    }


def serialize_context_message(message: ConversationMessage) -> dict[str, Any]:
    return {
        "direction": message.direction.value,
        "type": message.type.value,
        "text": message.display_text,
        "timestamp": _iso(message.sent_at),
    }


# =============================================================================
# SERVICE
# =============================================================================


class LeadQueueService:
    """Creates leads and enforces the queue's state machine."""

    def __init__(self, db: Session, training_sink: Optional[Any] = None):
        """Initialize the lead queue service.

        Args:
            db: SQLAlchemy database session.
            training_sink: Optional TrainingSink fed by completed leads.
        """
        self.db = db
        self.training_sink = training_sink

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_from_match(self, match: MatchResult) -> bool:
        """Queue the representative image group of an order match.

        Returns:
            True if a lead was created, False if one already covers these images.
        """
        return self.create_from_group(
            conversation=match.conversation,
            group=match.image_group,
            context_messages=match.context_messages,
            source=LeadSource.ORDER_MATCH,
            order_id=match.order.id,
            order_name=match.order.name,
            match_confidence=match.confidence.value,
            name_score=match.name_score,
        )

    def create_from_group(
        self,
        conversation: ConversationRecord,
        group: ImageGroup,
        context_messages: Sequence[ConversationMessage] = (),
        source: str = LeadSource.CONVERSATION,
        order_id: Optional[str] = None,
        order_name: Optional[str] = None,
        match_confidence: Optional[str] = None,
        name_score: Optional[int] = None,
    ) -> bool:
        """Queue one image group of a conversation as a ``new`` lead.

        Idempotent: a group whose image set is already queued is ignored.
        """
        if not group.messages:
            return False

        image_set_key = compute_image_set_key(group.message_ids)
        if self.get_by_image_set_key(image_set_key) is not None:
            return False

        lead = QueueLead(
            source=source,
            conversation_id=conversation.id,
            customer_name=conversation.display_name or None,
            customer_phone=conversation.phone or None,
            phone_key=normalize_phone(conversation.phone) or None,
            images=[serialize_image(m) for m in group.messages],
            context_messages=[serialize_context_message(m) for m in context_messages],
            image_count=len(group.messages),
            image_set_key=image_set_key,
            first_image_at=to_naive_utc(group.first_at),
            last_image_at=to_naive_utc(group.last_at),
            order_id=order_id,
            order_name=order_name,
            match_confidence=match_confidence,
            name_score=name_score,
            status=LeadStatus.NEW,
        )

        try:
            with self.db.begin_nested():
                self.db.add(lead)
        except IntegrityError:
            # Lost an insert race on image_set_key
            logger.info("Lead for image set %s already exists", image_set_key[:12])
            return False

        logger.info(
            "Queued lead %s for conversation %s (%d images)",
            lead.id,
            conversation.id,
            lead.image_count,
        )
        return True

    # =========================================================================
    # READ
    # =========================================================================

    def get(self, lead_id: int) -> QueueLead:
        """Get a lead by ID.

        Raises:
            LeadNotFound: If the lead does not exist.
        """
        lead = self.db.get(QueueLead, lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def get_by_image_set_key(self, image_set_key: str) -> Optional[QueueLead]:
        return (
            self.db.query(QueueLead)
            .filter(QueueLead.image_set_key == image_set_key)
            .first()
        )

    def list_leads(
        self,
        status: Optional[str] = None,
        claimed_by: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[QueueLead], int]:
        """List leads, newest photos first.

        Args:
            status: Filter by status (None or "all" for every status).
            claimed_by: Filter by claimant.
            offset: Pagination offset.
            limit: Page size (capped).

        Returns:
            Tuple of (leads, total matching count).
        """
        query = self.db.query(QueueLead)

        if status and status != "all":
            query = query.filter(QueueLead.status == status)
        if claimed_by:
            query = query.filter(QueueLead.claimed_by == claimed_by)

        total = query.count()

        limit = max(1, min(limit, MAX_LIST_LIMIT))
        leads = (
            query.order_by(QueueLead.first_image_at.desc(), QueueLead.id.desc())
            .offset(max(0, offset))
            .limit(limit)
            .all()
        )
        return leads, total

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _reload(self, lead_id: int) -> QueueLead:
        lead = self.db.get(QueueLead, lead_id, populate_existing=True)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def _transition(
        self,
        lead_id: int,
        allowed_from: Sequence[str],
        values: dict[Any, Any],
        attempted: str,
    ) -> QueueLead:
        """Apply ``values`` only if the lead is in one of ``allowed_from``."""
        values = dict(values)
        values[QueueLead.updated_at] = utcnow()

        updated = (
            self.db.query(QueueLead)
            .filter(
                QueueLead.id == lead_id,
                QueueLead.status.in_(allowed_from),
            )
            .update(values, synchronize_session=False)
        )
        self.db.flush()

        lead = self._reload(lead_id)
        if updated == 0:
            raise InvalidTransition(lead_id, attempted, lead.status)
        return lead

    def claim(self, lead_id: int, staff_id: str) -> QueueLead:
        """Take exclusive ownership of a ``new`` lead.

        Re-claiming a lead you already hold returns it unchanged.

        Raises:
            AlreadyClaimed: If another staff member holds the lead.
            LeadNotFound: If the lead does not exist.
            InvalidTransition: If the lead is terminal.
        """
        if not staff_id:
            raise ValueError("staff_id is required")

        now = utcnow()
        updated = (
            self.db.query(QueueLead)
            .filter(
                QueueLead.id == lead_id,
                QueueLead.claimed_by.is_(None),
                QueueLead.status == LeadStatus.NEW,
            )
            .update(
                {
                    QueueLead.status: LeadStatus.CLAIMED,
                    QueueLead.claimed_by: staff_id,
                    QueueLead.claimed_at: now,
                    QueueLead.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()

        lead = self._reload(lead_id)
        if updated > 0:
            logger.info("Lead %s claimed by %s", lead_id, staff_id)
            return lead

        if lead.status in CLAIMED_STATES:
            if lead.claimed_by == staff_id:
                return lead
            logger.info(
                "Claim on lead %s by %s lost to %s", lead_id, staff_id, lead.claimed_by
            )
            raise AlreadyClaimed(lead_id, lead.claimed_by)

        raise InvalidTransition(lead_id, "claim", lead.status)

    def unclaim(self, lead_id: int) -> QueueLead:
        """Release a held lead back to ``new``, discarding nothing but the claim."""
        lead = self._transition(
            lead_id,
            CLAIMED_STATES,
            {
                QueueLead.status: LeadStatus.NEW,
                QueueLead.claimed_by: None,
                QueueLead.claimed_at: None,
            },
            attempted="unclaim",
        )
        logger.info("Lead %s released", lead_id)
        return lead

    def skip(self, lead_id: int, reason: Optional[str] = None) -> QueueLead:
        """Mark a lead as not actionable. Skipping a skipped lead is a no-op."""
        try:
            return self._transition(
                lead_id,
                SKIPPABLE_STATES,
                {QueueLead.status: LeadStatus.SKIPPED, QueueLead.notes: reason},
                attempted="skip",
            )
        except InvalidTransition as e:
            if e.actual == LeadStatus.SKIPPED:
                return self._reload(lead_id)
            raise

    def save_analysis(
        self,
        lead_id: int,
        product_groups: Sequence[SavedProductGroup],
    ) -> QueueLead:
        """Persist the per-item analysis and mark the lead ``analyzed``.

        Saving again after quoting keeps the ``quoted`` state.
        """
        payload = [g.model_dump(mode="json") for g in product_groups]
        selected = [
            service
            for group in payload
            for service in group.get("selected_services", [])
        ]

        # Decided in the UPDATE so a concurrent quote is never downgraded
        next_status = case(
            (QueueLead.status == LeadStatus.QUOTED, LeadStatus.QUOTED),
            else_=LeadStatus.ANALYZED,
        )
        return self._transition(
            lead_id,
            CLAIMED_STATES,
            {
                QueueLead.status: next_status,
                QueueLead.analysis_result: payload,
                QueueLead.selected_services: selected,
            },
            attempted="save analysis for",
        )

    def mark_quoted(
        self,
        lead_id: int,
        draft_order_id: Optional[str] = None,
        draft_order_url: Optional[str] = None,
        estimation_id: Optional[str] = None,
    ) -> QueueLead:
        """Record the draft order sent to the customer."""
        values: dict[Any, Any] = {QueueLead.status: LeadStatus.QUOTED}
        if draft_order_id:
            values[QueueLead.draft_order_id] = draft_order_id
        if draft_order_url:
            values[QueueLead.draft_order_url] = draft_order_url
        if estimation_id:
            values[QueueLead.estimation_id] = estimation_id
        return self._transition(lead_id, CLAIMED_STATES, values, attempted="quote")

    def complete(
        self,
        lead_id: int,
        draft_order_id: Optional[str] = None,
        draft_order_url: Optional[str] = None,
        estimation_id: Optional[str] = None,
        training_payload: Optional[Sequence[ProductTrainingData]] = None,
        completed_by: Optional[str] = None,
    ) -> QueueLead:
        """Close out a held lead.

        Raises:
            InvalidTransition: If the lead was never claimed or is terminal.
        """
        return self._complete(
            lead_id,
            CLAIMED_STATES,
            without_claim=False,
            draft_order_id=draft_order_id,
            draft_order_url=draft_order_url,
            estimation_id=estimation_id,
            training_payload=training_payload,
            completed_by=completed_by,
        )

    def complete_without_claim(
        self,
        lead_id: int,
        draft_order_id: Optional[str] = None,
        draft_order_url: Optional[str] = None,
        estimation_id: Optional[str] = None,
        training_payload: Optional[Sequence[ProductTrainingData]] = None,
        completed_by: Optional[str] = None,
    ) -> QueueLead:
        """Close out a lead that nobody claimed. Flagged on the lead for audit."""
        lead = self._complete(
            lead_id,
            UNCLAIMED_COMPLETABLE_STATES,
            without_claim=True,
            draft_order_id=draft_order_id,
            draft_order_url=draft_order_url,
            estimation_id=estimation_id,
            training_payload=training_payload,
            completed_by=completed_by,
        )
        logger.warning(
            "Lead %s completed without claim by %s", lead_id, completed_by or "unknown"
        )
        return lead

    def _complete(
        self,
        lead_id: int,
        allowed_from: Sequence[str],
        without_claim: bool,
        draft_order_id: Optional[str],
        draft_order_url: Optional[str],
        estimation_id: Optional[str],
        training_payload: Optional[Sequence[ProductTrainingData]],
        completed_by: Optional[str],
    ) -> QueueLead:
        products = list(training_payload or [])

        values: dict[Any, Any] = {
            QueueLead.status: LeadStatus.COMPLETED,
            QueueLead.completed_at: utcnow(),
            QueueLead.completed_without_claim: without_claim,
        }
        if draft_order_id:
            values[QueueLead.draft_order_id] = draft_order_id
        if draft_order_url:
            values[QueueLead.draft_order_url] = draft_order_url
        if estimation_id:
            values[QueueLead.estimation_id] = estimation_id
        if completed_by:
            values[QueueLead.completed_by] = completed_by
        if products:
            values[QueueLead.training_payload] = [
                p.model_dump(mode="json") for p in products
            ]

        lead = self._transition(lead_id, allowed_from, values, attempted="complete")
        logger.info("Lead %s completed", lead_id)

        if products and self.training_sink is not None:
            self.training_sink.record(lead, products, verified_by=completed_by)

        return lead
