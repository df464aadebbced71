from celery import Celery
from celery.signals import setup_logging

from ticketing.core.config import settings
from ticketing.core.logging import configure_logging

celery_app = Celery(
    "ticketing",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["ticketing.worker.tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Worker processes log through the same structlog pipeline as the API.
    configure_logging()
