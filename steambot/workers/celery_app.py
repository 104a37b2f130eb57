"""
Celery application: outbound SMS segments that did not fit in the TwiML reply.
"""
from celery import Celery

from steambot.core.config import settings

celery_app = Celery(
    "steambot",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["steambot.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Los_Angeles",
    enable_utc=True,
    # one reply's segments are a single task; a few carrier round-trips with backoff
    task_time_limit=120,
    # re-queued if the worker dies mid-delivery
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)
