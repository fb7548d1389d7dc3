"""Training API routes.

Provides endpoints for:
- GET /training/matched-conversations - Orders matched to the photos sent before them
"""

import logging

from fastapi import APIRouter, Query

from quotedesk_core.api.deps import (
    ConversationIndexDep,
    MatchingConfigDep,
    OrderSourceDep,
    to_http_exception,
)
from quotedesk_core.api.schemas.queue import LeadContextMessage, LeadImage
from quotedesk_core.api.schemas.training import (
    MatchedConversationResponse,
    MatchedConversationsResponse,
    MatchFailureResponse,
    OrderLineItemResponse,
)
from quotedesk_core.domain.services.image_grouping import ImageGroup
from quotedesk_core.domain.services.lead_queue import (
    serialize_context_message,
    serialize_image,
)
from quotedesk_core.domain.services.matching import MatchResult, OrderConversationMatcher
from quotedesk_core.providers.base import ProviderError, UpstreamFailure

router = APIRouter(prefix="/training", tags=["training"])
logger = logging.getLogger(__name__)


def _images(group: ImageGroup) -> list[LeadImage]:
    return [LeadImage.model_validate(serialize_image(m)) for m in group.messages]


def build_match_response(match: MatchResult) -> MatchedConversationResponse:
    order = match.order
    return MatchedConversationResponse(
        order_id=order.id,
        order_name=order.name,
        order_created_at=order.created_at,
        total_amount=order.total_amount,
        currency=order.currency,
        line_items=[
            OrderLineItemResponse(title=i.title, quantity=i.quantity, price=i.price)
            for i in order.line_items
        ],
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        conversation_id=match.conversation.id,
        conversation_name=match.conversation.display_name,
        confidence=match.confidence.value,
        name_score=match.name_score,
        images=_images(match.image_group),
        image_groups=[_images(g) for g in match.image_groups],
        context_messages=[
            LeadContextMessage.model_validate(serialize_context_message(m))
            for m in match.context_messages
        ],
    )


@router.get(
    "/matched-conversations",
    response_model=MatchedConversationsResponse,
    summary="Matched conversations",
    description="Match recent orders to the customer photos sent before ordering.",
)
async def matched_conversations(
    index: ConversationIndexDep,
    order_source: OrderSourceDep,
    config: MatchingConfigDep,
    days_back: int = Query(default=30, ge=1, le=365),
    limit: int = Query(default=20, ge=1, le=250),
    refresh: bool = Query(default=False, description="Rebuild the conversation index"),
):
    """List orders with the photos and chat that preceded them."""
    try:
        await index.build(force_refresh=refresh)
    except UpstreamFailure as e:
        if index.size == 0:
            raise to_http_exception(e)
        logger.warning("Using partial conversation index: %s", e)
    except ProviderError as e:
        raise to_http_exception(e)

    try:
        orders = await order_source.list_recent_orders(days_back=days_back, limit=limit)
        matcher = OrderConversationMatcher(index=index, config=config)
        batch = await matcher.match_orders(orders, limit=limit)
    except ProviderError as e:
        logger.warning("Matched conversations failed: %s", e)
        raise to_http_exception(e)

    stats = batch.stats
    return MatchedConversationsResponse(
        matches=[build_match_response(m) for m in batch.matches],
        failures=[
            MatchFailureResponse(order_id=f.order_id, order_name=f.order_name, error=f.error)
            for f in batch.failures
        ],
        orders_total=stats.orders_total,
        matched=stats.matched,
        unmatched=stats.unmatched,
        skipped_no_phone=stats.skipped_no_phone,
        skipped_no_images=stats.skipped_no_images,
        failed=stats.failed,
        index_size=index.size,
    )
