from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.change_feed import publish_change
from ticketing.core.metrics import REGISTRATIONS
from ticketing.models import CheckIn, Event, Registration, TicketType, User
from ticketing.models.event import TicketKind
from ticketing.models.registration import RegistrationStatus
from ticketing.services import capacity, tickets, waitlist_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    CapacityExceededError,
    ConflictError,
    DuplicateRegistrationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ticketing.services.permissions import can_manage, require_manage_permission

logger = structlog.get_logger(__name__)


def active_registration(
    db: Session, event_id: Any, user_id: Any, ticket_type_id: Any
) -> Registration | None:
    return db.scalar(
        select(Registration).where(
            Registration.event_id == event_id,
            Registration.user_id == user_id,
            Registration.ticket_type_id == ticket_type_id,
            Registration.status != RegistrationStatus.CANCELLED,
        )
    )


def get_ticket_type(db: Session, event_id: Any, ticket_type_id: Any) -> TicketType:
    ticket_type = db.get(TicketType, ticket_type_id)
    if not ticket_type or ticket_type.event_id != event_id:
        raise NotFoundError(ErrorCode.TICKET_TYPE_NOT_FOUND.value, "ticket type not found")
    return ticket_type


def register(db: Session, user: User, event_id: Any, ticket_type_id: Any) -> Registration:
    """Confirm the participant if a slot is free, otherwise put them on the waitlist."""
    try:
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")

        ticket_type = get_ticket_type(db, event.id, ticket_type_id)
        if ticket_type.kind != TicketKind.FREE:
            raise ValidationError(
                ErrorCode.PAYMENT_REQUIRED.value, "this ticket type requires payment"
            )

        if active_registration(db, event.id, user.id, ticket_type.id):
            raise DuplicateRegistrationError()

        limit = capacity.effective_capacity(db, event)
        if capacity.claim_event_slot(db, event, limit):
            if not capacity.claim_ticket(db, ticket_type.id):
                raise CapacityExceededError(
                    f"ticket type {ticket_type.name!r} is sold out",
                    code=ErrorCode.TICKET_SOLD_OUT.value,
                    available=0,
                )
            status = RegistrationStatus.CONFIRMED
        else:
            status = RegistrationStatus.WAITLISTED

        registration = Registration(
            event_id=event.id,
            user_id=user.id,
            ticket_type_id=ticket_type.id,
            status=status,
            source="free",
        )
        db.add(registration)
        db.flush()
        registration.qr_token = tickets.mint_registration_token(registration)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateRegistrationError() from exc
    except Exception:
        db.rollback()
        raise

    REGISTRATIONS.labels(status=status.value).inc()
    logger.info(
        "registration_created",
        registration_id=str(registration.id),
        event_id=str(registration.event_id),
        user_id=str(user.id),
        status=status.value,
    )
    publish_change(
        "registration", "created", registration.id, event_id=registration.event_id, status=status.value
    )
    return registration


def _load_for_actor(db: Session, user: User, registration_id: Any) -> tuple[Registration, Event]:
    registration = db.get(Registration, registration_id, populate_existing=True)
    if not registration:
        raise NotFoundError(ErrorCode.REGISTRATION_NOT_FOUND.value, "registration not found")
    event = db.get(Event, registration.event_id)
    if registration.user_id != user.id and not (event and can_manage(user, event)):
        raise PermissionDeniedError(ErrorCode.NOT_OWNER.value, "not your registration")
    return registration, event


def get_registration(db: Session, user: User, registration_id: Any) -> Registration:
    registration, _ = _load_for_actor(db, user, registration_id)
    return registration


def cancel(db: Session, user: User, registration_id: Any) -> Registration:
    """Cancel a registration; a freed confirmed slot goes to the head of the waitlist.

    The cancellation is committed before promotion is attempted. A failed
    promotion never undoes it.
    """
    registration, event = _load_for_actor(db, user, registration_id)
    if registration.status == RegistrationStatus.CANCELLED:
        raise NotFoundError(ErrorCode.REGISTRATION_NOT_FOUND.value, "registration not found")
    if registration.checked_in_at is not None:
        raise ConflictError(
            ErrorCode.REGISTRATION_CHECKED_IN.value, "checked-in registrations cannot be cancelled"
        )

    previous = registration.status
    try:
        result = db.execute(
            update(Registration)
            .where(
                Registration.id == registration.id,
                Registration.status == previous,
                Registration.checked_in_at.is_(None),
            )
            .values(status=RegistrationStatus.CANCELLED, cancelled_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(
                ErrorCode.REGISTRATION_NOT_FOUND.value, "registration changed concurrently"
            )
        if previous == RegistrationStatus.CONFIRMED:
            capacity.release_event_slot(db, registration.event_id)
            capacity.release_ticket(db, registration.ticket_type_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(registration)
    REGISTRATIONS.labels(status="cancelled").inc()
    logger.info(
        "registration_cancelled",
        registration_id=str(registration.id),
        event_id=str(registration.event_id),
        previous_status=previous.value,
    )
    publish_change("registration", "cancelled", registration.id, event_id=registration.event_id)

    if previous == RegistrationStatus.CONFIRMED:
        waitlist_service.promote_after_release(db, registration.event_id)
    return registration


def list_for_event(
    db: Session,
    user: User,
    event_id: Any,
    status: RegistrationStatus | None = None,
) -> list[Registration]:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    require_manage_permission(user, event)

    stmt = (
        select(Registration)
        .where(Registration.event_id == event.id)
        .order_by(Registration.created_at, Registration.id)
    )
    if status is not None:
        stmt = stmt.where(Registration.status == status)
    return list(db.scalars(stmt).all())


def list_for_user(db: Session, user: User) -> list[Registration]:
    return list(
        db.scalars(
            select(Registration)
            .where(Registration.user_id == user.id)
            .order_by(Registration.created_at.desc())
        ).all()
    )


def event_stats(db: Session, user: User, event_id: Any) -> dict[str, Any]:
    event = db.get(Event, event_id, populate_existing=True)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    require_manage_permission(user, event)

    rows = db.execute(
        select(Registration.status, func.count())
        .where(Registration.event_id == event.id)
        .group_by(Registration.status)
    ).all()
    counts = {status.value: 0 for status in RegistrationStatus}
    for status, count in rows:
        counts[RegistrationStatus(status).value] = int(count)

    checked_in = int(
        db.scalar(select(func.count()).select_from(CheckIn).where(CheckIn.event_id == event.id))
        or 0
    )
    limit = capacity.effective_capacity(db, event)
    remaining = None
    if limit is not None and not event.override_capacity:
        remaining = max(limit - event.confirmed_count, 0)

    return {
        "event_id": event.id,
        "capacity": limit,
        "override_capacity": event.override_capacity,
        "confirmed": counts[RegistrationStatus.CONFIRMED.value],
        "waitlisted": counts[RegistrationStatus.WAITLISTED.value],
        "cancelled": counts[RegistrationStatus.CANCELLED.value],
        "checked_in": checked_in,
        "remaining": remaining,
    }
