"""QuoteDesk Worker Tasks."""

# Import all tasks to register them with Celery
from quotedesk_worker.tasks import queue  # noqa: F401
