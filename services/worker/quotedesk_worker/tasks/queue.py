"""Queue sync tasks: fill the lead queue from orders and recent chats."""

import asyncio
from typing import Optional

from quotedesk_worker.celery_app import app


def _build_sync_service(session):
    """Wire a QueueSyncService from settings for one task run.

    Each run gets its own conversation index; runs are minutes apart so a
    cached index would be stale anyway.
    """
    from quotedesk_core.api.deps import get_conversation_source, get_order_source
    from quotedesk_core.config import get_settings
    from quotedesk_core.domain.services.conversation_index import ConversationIndex
    from quotedesk_core.domain.services.lead_queue import LeadQueueService
    from quotedesk_core.domain.services.matching import MatchingConfig
    from quotedesk_core.domain.services.phone import PhoneNormalizer
    from quotedesk_core.domain.services.queue_sync import QueueSyncService

    settings = get_settings()
    index = ConversationIndex(
        source=get_conversation_source(),
        normalizer=PhoneNormalizer(settings.phone_country_code),
        ttl_seconds=settings.conversation_index_ttl_seconds,
    )
    return QueueSyncService(
        db=session,
        index=index,
        order_source=get_order_source(),
        config=MatchingConfig.from_settings(settings),
        lead_queue=LeadQueueService(session),
    )


@app.task(name="queue.sync_from_orders", bind=True)
def sync_from_orders(
    self,
    days_back: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    """Queue the photos customers sent before their recent orders.

    Args:
        days_back: Order window in days (defaults to SYNC_ORDERS_DAYS_BACK).
        limit: Maximum orders to match (defaults to SYNC_ORDERS_LIMIT).

    Returns:
        Dictionary with sync counts.
    """
    from quotedesk_core.config import get_settings
    from quotedesk_core.infra.db import get_sync_session_factory
    from quotedesk_core.observability import get_logger
    from quotedesk_core.providers.base import ProviderError

    logger = get_logger(__name__).bind(task=self.name, task_id=self.request.id)
    settings = get_settings()
    days_back = days_back or settings.sync_orders_days_back
    limit = limit or settings.sync_orders_limit

    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        service = _build_sync_service(session)
        result = asyncio.run(
            service.sync_from_orders(days_back=days_back, limit=limit, force_refresh=True)
        )
        session.commit()

        logger.info(
            "Order sync finished",
            leads_created=result.created,
            leads_skipped=result.skipped,
            matches_failed=result.failed,
            error=result.error,
        )
        return {
            "status": "partial" if result.error else "success",
            "task_type": "sync_from_orders",
            **result.to_dict(),
        }

    except ProviderError as e:
        session.rollback()
        logger.warning("Order sync not run", error=str(e))
        return {
            "status": "error",
            "task_type": "sync_from_orders",
            "error": str(e),
        }
    except Exception as e:
        session.rollback()
        logger.error("Order sync crashed", exc_info=True)
        return {
            "status": "error",
            "task_type": "sync_from_orders",
            "error": str(e),
        }
    finally:
        session.close()


@app.task(name="queue.sync_recent_conversations", bind=True)
def sync_recent_conversations(
    self,
    lookback_days: Optional[int] = None,
    orders_limit: Optional[int] = None,
) -> dict:
    """Queue photo bursts from customers who have not ordered yet.

    Args:
        lookback_days: Activity window in days (defaults to SYNC_ORDERS_DAYS_BACK).
        orders_limit: Orders fetched to skip customers who already ordered.

    Returns:
        Dictionary with sync counts.
    """
    from quotedesk_core.config import get_settings
    from quotedesk_core.infra.db import get_sync_session_factory
    from quotedesk_core.observability import get_logger
    from quotedesk_core.providers.base import ProviderError

    logger = get_logger(__name__).bind(task=self.name, task_id=self.request.id)
    settings = get_settings()
    lookback_days = lookback_days or settings.sync_orders_days_back
    orders_limit = orders_limit or settings.sync_orders_limit

    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        service = _build_sync_service(session)
        result = asyncio.run(
            service.sync_recent_conversations(
                lookback_days=lookback_days,
                force_refresh=True,
                orders_limit=orders_limit,
            )
        )
        session.commit()

        logger.info(
            "Conversation sync finished",
            leads_created=result.created,
            leads_skipped=result.skipped,
            conversations_failed=result.failed,
            error=result.error,
        )
        return {
            "status": "partial" if result.error else "success",
            "task_type": "sync_recent_conversations",
            **result.to_dict(),
        }

    except ProviderError as e:
        session.rollback()
        logger.warning("Conversation sync not run", error=str(e))
        return {
            "status": "error",
            "task_type": "sync_recent_conversations",
            "error": str(e),
        }
    except Exception as e:
        session.rollback()
        logger.error("Conversation sync crashed", exc_info=True)
        return {
            "status": "error",
            "task_type": "sync_recent_conversations",
            "error": str(e),
        }
    finally:
        session.close()
