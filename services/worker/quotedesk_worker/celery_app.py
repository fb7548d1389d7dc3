"""Celery application configuration for QuoteDesk Worker."""

from celery import Celery

from quotedesk_core.config import get_settings
from quotedesk_core.observability import configure_logging

settings = get_settings()

configure_logging(
    level=settings.log_level,
    json_format=settings.log_json,
    service_name="quotedesk-worker",
)

app = Celery(
    "quotedesk_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "quotedesk_worker.tasks.queue",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time limits (seconds); a full index build pages through every customer
    task_soft_time_limit=900,
    task_time_limit=1200,
    # Queue routing
    task_routes={
        "queue.*": {"queue": "queue"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=2,
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Match new orders back to the photos sent before them
    "queue-sync-orders-periodic": {
        "task": "queue.sync_from_orders",
        "schedule": 900.0,  # 15 minutes
        "args": (),
    },
}


if __name__ == "__main__":
    app.start()
