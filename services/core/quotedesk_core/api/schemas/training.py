"""Training API schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from quotedesk_core.api.schemas.queue import LeadContextMessage, LeadImage


class OrderLineItemResponse(BaseModel):
    title: str
    quantity: int
    price: Decimal


class MatchedConversationResponse(BaseModel):
    """An order matched to the photos the customer sent before ordering."""

    order_id: str
    order_name: str
    order_created_at: datetime
    total_amount: Decimal
    currency: str
    line_items: list[OrderLineItemResponse] = Field(default_factory=list)
    customer_name: str = ""
    customer_phone: Optional[str] = None

    conversation_id: str
    conversation_name: str
    confidence: str = Field(..., description="high, medium or low")
    name_score: int = Field(..., description="Name similarity 0-100")

    images: list[LeadImage] = Field(..., description="Representative (newest) photo group")
    image_groups: list[list[LeadImage]] = Field(
        default_factory=list, description="All photo groups, newest first"
    )
    context_messages: list[LeadContextMessage] = Field(default_factory=list)


class MatchFailureResponse(BaseModel):
    order_id: str
    order_name: str
    error: str


class MatchedConversationsResponse(BaseModel):
    """Response schema for the matched conversations listing."""

    matches: list[MatchedConversationResponse]
    failures: list[MatchFailureResponse] = Field(default_factory=list)
    orders_total: int = 0
    matched: int = 0
    unmatched: int = 0
    skipped_no_phone: int = 0
    skipped_no_images: int = 0
    failed: int = 0
    index_size: int = 0
