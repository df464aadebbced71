"""Waitlist promotion.

The waitlist is not stored separately: it is the event's ``waitlisted``
registrations in creation order. Promotion re-checks capacity, so calling it
speculatively when nothing was freed is a no-op.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ticketing.change_feed import publish_change
from ticketing.core.metrics import PROMOTIONS
from ticketing.models import Event, Registration, TicketType, User
from ticketing.models.registration import RegistrationStatus
from ticketing.services import capacity
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import NotFoundError, ServiceError
from ticketing.services.permissions import require_manage_permission

logger = structlog.get_logger(__name__)


def _next_candidate(db: Session, event_id: Any, skipped: set[Any]) -> Registration | None:
    stmt = (
        select(Registration)
        .join(TicketType, TicketType.id == Registration.ticket_type_id)
        .where(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.WAITLISTED,
            or_(TicketType.capacity.is_(None), TicketType.sold_count < TicketType.capacity),
        )
        .order_by(Registration.created_at, Registration.id)
        .limit(1)
    )
    if skipped:
        stmt = stmt.where(Registration.id.not_in(skipped))
    return db.scalar(stmt)


def promote_next(db: Session, event_id: Any) -> Registration | None:
    """Move the oldest eligible waitlisted registration to confirmed.

    Returns the promoted registration, or None when there is no free slot or
    nobody is waiting.
    """
    skipped: set[Any] = set()
    try:
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
        limit = capacity.effective_capacity(db, event)

        while True:
            candidate = _next_candidate(db, event.id, skipped)
            if candidate is None:
                db.rollback()
                PROMOTIONS.labels(outcome="empty").inc()
                return None

            if not capacity.claim_event_slot(db, event, limit):
                db.rollback()
                PROMOTIONS.labels(outcome="full").inc()
                return None

            if not capacity.claim_ticket(db, candidate.ticket_type_id):
                capacity.release_event_slot(db, event.id)
                skipped.add(candidate.id)
                continue

            moved = db.execute(
                update(Registration)
                .where(
                    Registration.id == candidate.id,
                    Registration.status == RegistrationStatus.WAITLISTED,
                )
                .values(status=RegistrationStatus.CONFIRMED)
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                capacity.release_event_slot(db, event.id)
                capacity.release_ticket(db, candidate.ticket_type_id)
                skipped.add(candidate.id)
                continue

            db.commit()
            break
    except Exception:
        db.rollback()
        raise

    db.refresh(candidate)
    PROMOTIONS.labels(outcome="promoted").inc()
    logger.info(
        "waitlist_promoted",
        registration_id=str(candidate.id),
        event_id=str(candidate.event_id),
        user_id=str(candidate.user_id),
    )
    publish_change("registration", "promoted", candidate.id, event_id=candidate.event_id)
    return candidate


def promote_after_release(db: Session, event_id: Any) -> Registration | None:
    """Promotion following a committed cancellation.

    Storage failures are logged and handed to the worker for retry; the
    cancellation that triggered this has already been committed.
    """
    try:
        return promote_next(db, event_id)
    except SQLAlchemyError:
        db.rollback()
        PROMOTIONS.labels(outcome="failed").inc()
        logger.exception("waitlist_promotion_failed", event_id=str(event_id))
    except ServiceError as exc:
        # The event changed under the cancellation; nothing left to retry.
        db.rollback()
        PROMOTIONS.labels(outcome="skipped").inc()
        logger.warning("waitlist_promotion_skipped", event_id=str(event_id), code=exc.code)
        return None

    from ticketing.worker.tasks import enqueue_promotion

    enqueue_promotion(event_id)
    return None


def list_waitlist(db: Session, user: User, event_id: Any) -> list[Registration]:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    require_manage_permission(user, event)

    return list(
        db.scalars(
            select(Registration)
            .where(
                Registration.event_id == event.id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.created_at, Registration.id)
        ).all()
    )


def promote_for_organizer(db: Session, user: User, event_id: Any) -> Registration | None:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    require_manage_permission(user, event)
    return promote_next(db, event.id)


def count_waitlisted(db: Session, event_id: Any) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(Registration)
            .where(
                Registration.event_id == event_id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
        )
        or 0
    )
