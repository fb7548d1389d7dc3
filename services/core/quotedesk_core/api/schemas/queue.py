"""Lead queue API schemas."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from quotedesk_core.domain.models import QueueLead
from quotedesk_core.domain.schemas.analysis import ProductTrainingData


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime has UTC timezone for proper JSON serialization."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Naive datetime from MySQL - assume UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# LEAD SCHEMAS
# =============================================================================


class LeadImage(BaseModel):
    """A customer photo attached to a lead."""

    url: Optional[str] = Field(default=None, description="Media URL")
    message_id: str = Field(..., description="CRM message ID")
    timestamp: Optional[datetime] = Field(default=None, description="When the photo was sent")
    caption: Optional[str] = Field(default=None, description="Photo caption")


class LeadContextMessage(BaseModel):
    """A chat message sent around the photos."""

    direction: str = Field(..., description="'from_customer' or 'from_store'")
    type: str = Field(default="text", description="Message type")
    text: str = Field(default="", description="Message text")
    timestamp: Optional[datetime] = Field(default=None, description="When it was sent")


class LeadResponse(BaseModel):
    """Response schema for a queue lead."""

    id: int = Field(..., description="Lead ID")
    source: str = Field(..., description="'order_match' or 'conversation'")
    status: str = Field(..., description="Lead status")

    conversation_id: str = Field(..., description="CRM conversation ID")
    customer_name: Optional[str] = Field(default=None)
    customer_phone: Optional[str] = Field(default=None)

    images: list[LeadImage] = Field(default_factory=list)
    context_messages: list[LeadContextMessage] = Field(default_factory=list)
    image_count: int = Field(default=0)
    first_image_at: datetime = Field(..., description="Earliest photo in the lead")
    last_image_at: Optional[datetime] = Field(default=None)

    order_id: Optional[str] = Field(default=None, description="Matched order ID")
    order_name: Optional[str] = Field(default=None, description="Matched order number")
    match_confidence: Optional[str] = Field(default=None, description="high, medium or low")
    name_score: Optional[int] = Field(default=None, description="Name similarity 0-100")

    claimed_by: Optional[str] = Field(default=None)
    claimed_at: Optional[datetime] = Field(default=None)

    analysis_result: Optional[list[dict[str, Any]]] = Field(default=None)
    selected_services: Optional[list[dict[str, Any]]] = Field(default=None)
    estimation_id: Optional[str] = Field(default=None)
    draft_order_id: Optional[str] = Field(default=None)
    draft_order_url: Optional[str] = Field(default=None)

    completed_at: Optional[datetime] = Field(default=None)
    completed_by: Optional[str] = Field(default=None)
    completed_without_claim: bool = Field(default=False)
    notes: Optional[str] = Field(default=None)

    created_at: datetime
    updated_at: datetime


def build_lead_response(lead: QueueLead) -> LeadResponse:
    """Build a LeadResponse with UTC-aware timestamps."""
    return LeadResponse(
        id=lead.id,
        source=lead.source,
        status=lead.status,
        conversation_id=lead.conversation_id,
        customer_name=lead.customer_name,
        customer_phone=lead.customer_phone,
        images=[LeadImage.model_validate(i) for i in lead.images or []],
        context_messages=[
            LeadContextMessage.model_validate(m) for m in lead.context_messages or []
        ],
        image_count=lead.image_count,
        first_image_at=_ensure_utc(lead.first_image_at),
        last_image_at=_ensure_utc(lead.last_image_at),
        order_id=lead.order_id,
        order_name=lead.order_name,
        match_confidence=lead.match_confidence,
        name_score=lead.name_score,
        claimed_by=lead.claimed_by,
        claimed_at=_ensure_utc(lead.claimed_at),
        analysis_result=lead.analysis_result,
        selected_services=lead.selected_services,
        estimation_id=lead.estimation_id,
        draft_order_id=lead.draft_order_id,
        draft_order_url=lead.draft_order_url,
        completed_at=_ensure_utc(lead.completed_at),
        completed_by=lead.completed_by,
        completed_without_claim=bool(lead.completed_without_claim),
        notes=lead.notes,
        created_at=_ensure_utc(lead.created_at),
        updated_at=_ensure_utc(lead.updated_at),
    )


class ListLeadsResponse(BaseModel):
    """Response schema for listing leads."""

    leads: list[LeadResponse] = Field(..., description="Page of leads")
    total: int = Field(..., description="Total matching leads")


# =============================================================================
# ACTION SCHEMAS
# =============================================================================


class ClaimLeadRequest(BaseModel):
    """Request schema for claiming a lead."""

    claimed_by: str = Field(..., min_length=1, max_length=128, description="Staff member")


class SkipLeadRequest(BaseModel):
    """Request schema for skipping a lead."""

    reason: Optional[str] = Field(default=None, max_length=2000)


class SaveAnalysisRequest(BaseModel):
    """Request schema for saving per-item analysis."""

    product_groups: list[dict[str, Any]] = Field(
        ..., description="Analyzed items; an item's analysis may be raw model output"
    )


class QuoteLeadRequest(BaseModel):
    """Request schema for recording the quote sent to the customer."""

    draft_order_id: Optional[str] = Field(default=None)
    draft_order_url: Optional[str] = Field(default=None)
    estimation_id: Optional[str] = Field(default=None)
    quoted_by: Optional[str] = Field(default=None, description="Staff member quoting")


class CompleteLeadRequest(BaseModel):
    """Request schema for completing a lead."""

    estimation_id: Optional[str] = Field(default=None)
    draft_order_id: Optional[str] = Field(default=None)
    draft_order_url: Optional[str] = Field(default=None)
    training_data: list[ProductTrainingData] = Field(default_factory=list)
    verified_by: Optional[str] = Field(default=None, description="Staff member completing")
    without_claim: bool = Field(
        default=False,
        description="Complete a lead nobody claimed (recorded on the lead)",
    )


# =============================================================================
# SYNC SCHEMAS
# =============================================================================


class SyncResponse(BaseModel):
    """Counts from a queue sync run."""

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
    failures: list[dict[str, Any]] = Field(default_factory=list)
    index_size: int = 0
    index_complete: bool = True
    error: Optional[str] = None
