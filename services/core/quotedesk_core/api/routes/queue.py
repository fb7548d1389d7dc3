"""Lead queue API routes.

Provides endpoints for:
- GET /queue - List leads
- GET /queue/{id} - Get lead by ID
- POST /queue/sync - Pull new leads from orders or recent conversations
- POST /queue/{id}/claim - Take ownership of a lead
- POST /queue/{id}/unclaim - Release a lead
- POST /queue/{id}/skip - Mark a lead as not actionable
- POST /queue/{id}/save-analysis - Persist per-item analysis
- POST /queue/{id}/quote - Record the draft order sent to the customer
- POST /queue/{id}/complete - Close out a lead
"""

import uuid
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from quotedesk_core.api.deps import (
    ConversationIndexDep,
    DBSession,
    LeadQueueDep,
    MatchingConfigDep,
    OrderSourceDep,
    to_http_exception,
)
from quotedesk_core.api.schemas.queue import (
    ClaimLeadRequest,
    CompleteLeadRequest,
    LeadResponse,
    ListLeadsResponse,
    QuoteLeadRequest,
    SaveAnalysisRequest,
    SkipLeadRequest,
    SyncResponse,
    build_lead_response,
)
from quotedesk_core.config import get_settings
from quotedesk_core.domain.models import LEAD_STATUSES
from quotedesk_core.domain.schemas.analysis import AnalysisPayloadError, parse_product_groups
from quotedesk_core.domain.services.lead_queue import LeadQueueError
from quotedesk_core.domain.services.queue_sync import QueueSyncService
from quotedesk_core.observability import RequestContext, get_logger
from quotedesk_core.providers.base import ProviderError

router = APIRouter(prefix="/queue", tags=["queue"])
logger = get_logger(__name__)


def _context(
    http_request: Request,
    lead_id: Optional[int] = None,
    staff_id: Optional[str] = None,
) -> RequestContext:
    return RequestContext(
        request_id=http_request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12],
        staff_id=staff_id,
        lead_id=lead_id,
        path=http_request.url.path,
        method=http_request.method,
    )


# =============================================================================
# LIST / GET
# =============================================================================


@router.get(
    "",
    response_model=ListLeadsResponse,
    summary="List leads",
    description="List queue leads, newest photos first.",
)
async def list_leads(
    lead_queue: LeadQueueDep,
    status_filter: Optional[str] = Query(
        default=None, alias="status", description="Filter by status ('all' for every status)"
    ),
    claimed_by: Optional[str] = Query(default=None, description="Filter by claimant"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    limit: int = Query(default=50, ge=1, le=200, description="Maximum results"),
):
    """List leads with optional filters."""
    if status_filter and status_filter != "all" and status_filter not in LEAD_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status: {status_filter}. Must be one of {list(LEAD_STATUSES)}",
        )

    leads, total = lead_queue.list_leads(
        status=status_filter,
        claimed_by=claimed_by,
        offset=offset,
        limit=limit,
    )
    return ListLeadsResponse(
        leads=[build_lead_response(lead) for lead in leads],
        total=total,
    )


@router.get(
    "/{lead_id}",
    response_model=LeadResponse,
    summary="Get lead by ID",
)
async def get_lead(lead_id: int, lead_queue: LeadQueueDep):
    """Get a lead by ID."""
    try:
        lead = lead_queue.get(lead_id)
    except LeadQueueError as e:
        raise to_http_exception(e)
    return build_lead_response(lead)


# =============================================================================
# SYNC
# =============================================================================


@router.post(
    "/sync",
    response_model=SyncResponse,
    summary="Sync queue",
    description="Pull new leads. 'orders' matches recent orders back to their "
                "conversations; 'conversations' queues recent photo senders "
                "who have not ordered.",
)
async def sync_queue(
    http_request: Request,
    db: DBSession,
    index: ConversationIndexDep,
    order_source: OrderSourceDep,
    config: MatchingConfigDep,
    mode: Literal["orders", "conversations"] = Query(default="orders"),
    days_back: Optional[int] = Query(default=None, ge=1, le=90),
    limit: Optional[int] = Query(default=None, ge=1, le=2000),
    force_refresh: bool = Query(default=False, description="Rebuild the conversation index"),
):
    """Run a queue sync and report counts."""
    settings = get_settings()
    days_back = days_back or settings.sync_orders_days_back
    limit = limit or settings.sync_orders_limit
    context = _context(http_request)

    service = QueueSyncService(db=db, index=index, order_source=order_source, config=config)
    try:
        if mode == "orders":
            result = await service.sync_from_orders(
                days_back=days_back, limit=limit, force_refresh=force_refresh
            )
        else:
            result = await service.sync_recent_conversations(
                lookback_days=days_back,
                force_refresh=force_refresh,
                orders_limit=limit,
            )
    except ProviderError as e:
        logger.warning("Queue sync failed", context=context, mode=mode, error=str(e))
        raise to_http_exception(e)

    logger.info(
        "Queue sync finished",
        context=context,
        mode=mode,
        leads_created=result.created,
        leads_skipped=result.skipped,
        matches_failed=result.failed,
    )
    return SyncResponse(**result.to_dict())


# =============================================================================
# STATE CHANGES
# =============================================================================


@router.post(
    "/{lead_id}/claim",
    response_model=LeadResponse,
    summary="Claim lead",
    responses={409: {"description": "Lead already claimed by someone else"}},
)
async def claim_lead(
    lead_id: int,
    request: ClaimLeadRequest,
    http_request: Request,
    lead_queue: LeadQueueDep,
):
    """Take exclusive ownership of a lead."""
    context = _context(http_request, lead_id=lead_id, staff_id=request.claimed_by)
    try:
        lead = lead_queue.claim(lead_id, request.claimed_by)
    except LeadQueueError as e:
        logger.info("Claim rejected", context=context, reason=str(e))
        raise to_http_exception(e)
    logger.info("Lead claimed", context=context)
    return build_lead_response(lead)


@router.post("/{lead_id}/unclaim", response_model=LeadResponse, summary="Release lead")
async def unclaim_lead(lead_id: int, http_request: Request, lead_queue: LeadQueueDep):
    """Release a lead back to the queue."""
    try:
        lead = lead_queue.unclaim(lead_id)
    except LeadQueueError as e:
        raise to_http_exception(e)
    logger.info("Lead released", context=_context(http_request, lead_id=lead_id))
    return build_lead_response(lead)


@router.post("/{lead_id}/skip", response_model=LeadResponse, summary="Skip lead")
async def skip_lead(
    lead_id: int,
    http_request: Request,
    lead_queue: LeadQueueDep,
    request: Optional[SkipLeadRequest] = None,
):
    """Mark a lead as not actionable."""
    reason = request.reason if request else None
    try:
        lead = lead_queue.skip(lead_id, reason=reason)
    except LeadQueueError as e:
        raise to_http_exception(e)
    logger.info("Lead skipped", context=_context(http_request, lead_id=lead_id), reason=reason)
    return build_lead_response(lead)


@router.post(
    "/{lead_id}/save-analysis",
    response_model=LeadResponse,
    summary="Save analysis",
    description="Persist per-item analysis and selected services so work survives "
                "leaving the page.",
)
async def save_analysis(
    lead_id: int,
    request: SaveAnalysisRequest,
    lead_queue: LeadQueueDep,
):
    """Save analysis results for a lead."""
    try:
        product_groups = parse_product_groups(request.product_groups)
        lead = lead_queue.save_analysis(lead_id, product_groups)
    except (AnalysisPayloadError, LeadQueueError) as e:
        raise to_http_exception(e)
    return build_lead_response(lead)


@router.post("/{lead_id}/quote", response_model=LeadResponse, summary="Mark lead quoted")
async def quote_lead(
    lead_id: int,
    request: QuoteLeadRequest,
    http_request: Request,
    lead_queue: LeadQueueDep,
):
    """Record the draft order or estimation sent for a held lead."""
    try:
        lead = lead_queue.mark_quoted(
            lead_id,
            draft_order_id=request.draft_order_id,
            draft_order_url=request.draft_order_url,
            estimation_id=request.estimation_id,
        )
    except LeadQueueError as e:
        raise to_http_exception(e)
    logger.info(
        "Lead quoted",
        context=_context(http_request, lead_id=lead_id, staff_id=request.quoted_by),
        draft_order_id=request.draft_order_id,
    )
    return build_lead_response(lead)


@router.post("/{lead_id}/complete", response_model=LeadResponse, summary="Complete lead")
async def complete_lead(
    lead_id: int,
    request: CompleteLeadRequest,
    http_request: Request,
    lead_queue: LeadQueueDep,
):
    """Mark a lead completed and record its training data."""
    complete = (
        lead_queue.complete_without_claim if request.without_claim else lead_queue.complete
    )
    try:
        lead = complete(
            lead_id,
            draft_order_id=request.draft_order_id,
            draft_order_url=request.draft_order_url,
            estimation_id=request.estimation_id,
            training_payload=request.training_data,
            completed_by=request.verified_by,
        )
    except LeadQueueError as e:
        raise to_http_exception(e)
    logger.info(
        "Lead completed",
        context=_context(http_request, lead_id=lead_id, staff_id=request.verified_by),
        without_claim=request.without_claim,
        draft_order_id=request.draft_order_id,
    )
    return build_lead_response(lead)
