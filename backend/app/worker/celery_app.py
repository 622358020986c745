from celery import Celery
from app.core.config import settings
from app.core.logging import configure_logging

configure_logging(settings.ENV, settings.LOG_LEVEL)

celery_app = Celery(
    "vetonco",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.worker.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.TZ,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
