"""API dependencies for dependency injection."""

from typing import Annotated, Generator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from quotedesk_core.config import get_settings
from quotedesk_core.domain.schemas.analysis import AnalysisPayloadError
from quotedesk_core.domain.services.conversation_index import ConversationIndex
from quotedesk_core.domain.services.lead_queue import (
    AlreadyClaimed,
    InvalidTransition,
    LeadNotFound,
    LeadQueueService,
)
from quotedesk_core.domain.services.matching import MatchingConfig
from quotedesk_core.domain.services.phone import PhoneNormalizer
from quotedesk_core.domain.services.training import DatabaseTrainingSink
from quotedesk_core.infra.db import get_db_session
from quotedesk_core.infrastructure.retry import BackoffStrategy
from quotedesk_core.providers.base import (
    ConversationSource,
    OrderSource,
    ProviderNotConfigured,
    UpstreamFailure,
)
from quotedesk_core.providers.shopify import ShopifyAdapter
from quotedesk_core.providers.zoko import ZokoAdapter


def get_db() -> Generator[Session, None, None]:
    """Get a request-scoped database session, committed on success."""
    yield from get_db_session()


# =============================================================================
# COLLABORATORS
# =============================================================================


def get_conversation_source() -> ConversationSource:
    """Get the messaging-CRM adapter."""
    settings = get_settings()
    return ZokoAdapter(
        api_key=settings.zoko_api_key,
        base_url=settings.zoko_base_url,
        timeout=settings.http_timeout_seconds,
        backoff=BackoffStrategy(max_attempts=settings.http_max_attempts),
    )


def get_order_source() -> OrderSource:
    """Get the commerce adapter."""
    settings = get_settings()
    return ShopifyAdapter(
        store_domain=settings.shopify_store_domain,
        access_token=settings.shopify_access_token,
        api_version=settings.shopify_api_version,
        timeout=settings.http_timeout_seconds,
        backoff=BackoffStrategy(max_attempts=settings.http_max_attempts),
    )


def get_conversation_index(
    request: Request,
    source: Annotated[ConversationSource, Depends(get_conversation_source)],
) -> ConversationIndex:
    """Get the process-wide conversation index, creating it on first use."""
    index = getattr(request.app.state, "conversation_index", None)
    if index is None:
        settings = get_settings()
        index = ConversationIndex(
            source=source,
            normalizer=PhoneNormalizer(settings.phone_country_code),
            ttl_seconds=settings.conversation_index_ttl_seconds,
        )
        request.app.state.conversation_index = index
    return index


def get_matching_config() -> MatchingConfig:
    """Get matcher tunables from settings."""
    return MatchingConfig.from_settings(get_settings())


# =============================================================================
# SERVICES
# =============================================================================


def get_lead_queue(db: Annotated[Session, Depends(get_db)]) -> LeadQueueService:
    """Get the lead queue service, wired to record training examples."""
    return LeadQueueService(db=db, training_sink=DatabaseTrainingSink(db))


# =============================================================================
# ERRORS
# =============================================================================


def to_http_exception(error: Exception) -> HTTPException:
    """Map a domain or provider error to an HTTPException."""
    if isinstance(error, LeadNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (AlreadyClaimed, InvalidTransition)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, AnalysisPayloadError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error)
        )
    if isinstance(error, ProviderNotConfigured):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error)
        )
    if isinstance(error, UpstreamFailure):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error)
    )


# Type aliases for cleaner route signatures
DBSession = Annotated[Session, Depends(get_db)]
LeadQueueDep = Annotated[LeadQueueService, Depends(get_lead_queue)]
ConversationIndexDep = Annotated[ConversationIndex, Depends(get_conversation_index)]
OrderSourceDep = Annotated[OrderSource, Depends(get_order_source)]
MatchingConfigDep = Annotated[MatchingConfig, Depends(get_matching_config)]
