"""Domain models for QuoteDesk.

This module defines the SQLAlchemy ORM models for the lead queue and the
training examples harvested from completed leads.

Timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC for storage."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================


class LeadStatus(str):
    """Queue lead status values."""

    NEW = "new"
    CLAIMED = "claimed"
    ANALYZED = "analyzed"
    QUOTED = "quoted"
    COMPLETED = "completed"
    SKIPPED = "skipped"


LEAD_STATUSES = (
    LeadStatus.NEW,
    LeadStatus.CLAIMED,
    LeadStatus.ANALYZED,
    LeadStatus.QUOTED,
    LeadStatus.COMPLETED,
    LeadStatus.SKIPPED,
)


class LeadSource(str):
    """How a lead entered the queue."""

    ORDER_MATCH = "order_match"
    CONVERSATION = "conversation"


class TrainingStatus(str):
    """Training example status values."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


# =============================================================================
# QUEUE
# =============================================================================


class QueueLead(Base):
    """A batch of customer photos waiting to be turned into a quote.

    Leads are never deleted; ``completed`` and ``skipped`` are terminal.
    """

    __tablename__ = "queue_leads"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    source: Mapped[str] = mapped_column(
        Enum("order_match", "conversation", name="queue_lead_source_enum"),
        nullable=False,
        default=LeadSource.CONVERSATION,
    )

    # Customer
    conversation_id: Mapped[str] = mapped_column(String(128), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone_key: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Photos and chat around them
    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    context_messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_set_key: Mapped[str] = mapped_column(String(64), nullable=False)
    first_image_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_image_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Order match
    order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    order_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    match_confidence: Mapped[Optional[str]] = mapped_column(
        Enum("high", "medium", "low", name="queue_lead_confidence_enum"),
        nullable=True,
    )
    name_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Workflow
    status: Mapped[str] = mapped_column(
        Enum(*LEAD_STATUSES, name="queue_lead_status_enum"),
        nullable=False,
        default=LeadStatus.NEW,
    )
    claimed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Work product
    analysis_result: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    selected_services: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    estimation_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    draft_order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    draft_order_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    training_payload: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    completed_without_claim: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("image_set_key", name="uq_queue_lead_image_set"),
        Index("idx_queue_lead_status", "status", "first_image_at"),
        Index("idx_queue_lead_claimed_by", "claimed_by"),
        Index("idx_queue_lead_phone_key", "phone_key"),
        Index("idx_queue_lead_order", "order_id"),
    )

    def __repr__(self) -> str:
        return f"<QueueLead id={self.id} status={self.status} claimed_by={self.claimed_by}>"


# =============================================================================
# TRAINING
# =============================================================================


class TrainingExample(Base):
    """One verified photo-to-services pairing harvested from a completed lead."""

    __tablename__ = "training_examples"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    lead_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("queue_leads.id"), nullable=True
    )

    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    image_source: Mapped[str] = mapped_column(String(32), nullable=False, default="zoko")
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    ai_category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ai_sub_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    ai_material: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ai_condition: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ai_issues: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    correct_services: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        Enum("pending", "verified", "rejected", name="training_example_status_enum"),
        nullable=False,
        default=TrainingStatus.VERIFIED,
    )
    verified_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_training_example_lead", "lead_id"),
        Index("idx_training_example_category", "ai_category"),
    )
