"""Celery application configuration."""

from celery import Celery

from vodstream.core.config import settings

celery_app = Celery(
    "vodstream",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL or "memory://",
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL or None,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # The orchestrator enforces its own budget; this is the hard backstop.
    task_time_limit=int(settings.TRANSCODE_TIMEOUT_SECONDS) + 300,
    worker_prefetch_multiplier=1,
    task_acks_late=False,
    task_reject_on_worker_lost=False,
)

celery_app.autodiscover_tasks(["vodstream.modules.video"])
