import uuid

from celery.utils.log import get_task_logger
from kombu.exceptions import OperationalError as BrokerError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ticketing.db import SessionLocal
from ticketing.services import waitlist_service
from ticketing.worker.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(
    name="promote_waitlist",
    autoretry_for=(SQLAlchemyError,),
    retry_backoff=True,
    max_retries=5,
)
def promote_waitlist(event_id: str) -> dict:
    """Retry of a promotion that failed after a committed cancellation."""
    db: Session = SessionLocal()
    try:
        promoted = waitlist_service.promote_next(db, uuid.UUID(event_id))
        logger.info(
            "promote_waitlist event_id=%s promoted=%s",
            event_id,
            promoted.id if promoted else None,
        )
        return {
            "event_id": event_id,
            "registration_id": str(promoted.id) if promoted else None,
        }
    finally:
        db.close()


def enqueue_promotion(event_id) -> None:
    try:
        promote_waitlist.delay(str(event_id))
    except BrokerError:
        logger.error("promotion_enqueue_failed event_id=%s", event_id)
