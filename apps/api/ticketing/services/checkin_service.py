"""Check-in: resolve a scanned QR payload to a registration and mark it used.

``checked_in_at`` on the registration is flipped with a conditional UPDATE,
so of any number of concurrent scans of one ticket exactly one succeeds and
the rest see ``AlreadyCheckedInError``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.change_feed import publish_change
from ticketing.core.metrics import CHECKINS
from ticketing.models import CheckIn, Event, Order, Registration, User
from ticketing.models.registration import RegistrationStatus
from ticketing.services import tickets
from ticketing.services.allocation_service import find_resource_for_event
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    AlreadyCheckedInError,
    InvalidTokenError,
    NotFoundError,
)
from ticketing.services.permissions import require_manage_permission

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckInResult:
    registration_id: Any
    event_id: Any
    participant_id: Any
    participant_name: str | None
    participant_email: str | None
    ticket_type_id: Any
    resource_id: Any
    checked_in_at: datetime


def _as_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


def _by_registration_id(db: Session, identifier: str) -> Registration | None:
    key = _as_uuid(identifier)
    if key is None:
        return None
    return db.get(Registration, key, populate_existing=True)


def _by_order_id(db: Session, identifier: str) -> Registration | None:
    key = _as_uuid(identifier)
    if key is None:
        return None
    order = db.get(Order, key, populate_existing=True)
    if not order or not order.registration_id:
        return None
    return db.get(Registration, order.registration_id, populate_existing=True)


# Tried in order; the first hit wins.
RESOLUTION_STRATEGIES: tuple[Callable[[Session, str], Registration | None], ...] = (
    _by_registration_id,
    _by_order_id,
)


def resolve_token(db: Session, raw: str, event_id: Any = None) -> Registration:
    identifier = tickets.extract_identifier(raw or "")
    if not identifier:
        raise InvalidTokenError()

    for strategy in RESOLUTION_STRATEGIES:
        registration = strategy(db, identifier)
        if registration is None:
            continue
        if registration.status != RegistrationStatus.CONFIRMED:
            raise InvalidTokenError("ticket is not confirmed")
        if event_id is not None and registration.event_id != event_id:
            raise InvalidTokenError("ticket belongs to a different event")
        return registration

    raise InvalidTokenError()


def _result_for(db: Session, registration: Registration, checked_in_at: datetime, resource_id: Any) -> CheckInResult:
    participant = db.get(User, registration.user_id)
    return CheckInResult(
        registration_id=registration.id,
        event_id=registration.event_id,
        participant_id=registration.user_id,
        participant_name=participant.display_name if participant else None,
        participant_email=participant.email if participant else None,
        ticket_type_id=registration.ticket_type_id,
        resource_id=resource_id,
        checked_in_at=checked_in_at,
    )


def check_in(db: Session, registration: Registration, scanned_by: User | None = None) -> CheckInResult:
    """Mark the registration used and append the check-in record in one unit."""
    now = datetime.now(timezone.utc)
    try:
        flipped = db.execute(
            update(Registration)
            .where(
                Registration.id == registration.id,
                Registration.checked_in_at.is_(None),
                Registration.status == RegistrationStatus.CONFIRMED,
            )
            .values(checked_in_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            db.rollback()
            current = db.get(Registration, registration.id, populate_existing=True)
            if current is not None and current.checked_in_at is not None:
                CHECKINS.labels(outcome="duplicate").inc()
                raise AlreadyCheckedInError(current.checked_in_at, current.id)
            CHECKINS.labels(outcome="invalid").inc()
            raise InvalidTokenError("ticket is not confirmed")

        resource = find_resource_for_event(db, registration.event_id)
        resource_id = resource.id if resource else None
        existing = db.scalar(select(CheckIn).where(CheckIn.registration_id == registration.id))
        if existing is None:
            db.add(
                CheckIn(
                    registration_id=registration.id,
                    participant_id=registration.user_id,
                    event_id=registration.event_id,
                    resource_id=resource_id,
                    scanned_by=scanned_by.id if scanned_by else None,
                    checked_in_at=now,
                )
            )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        CHECKINS.labels(outcome="duplicate").inc()
        current = db.get(Registration, registration.id, populate_existing=True)
        raise AlreadyCheckedInError(current.checked_in_at if current else None, registration.id) from exc
    except (AlreadyCheckedInError, InvalidTokenError):
        raise
    except Exception:
        db.rollback()
        raise

    CHECKINS.labels(outcome="checked_in").inc()
    logger.info(
        "attendee_checked_in",
        registration_id=str(registration.id),
        event_id=str(registration.event_id),
        resource_id=str(resource_id) if resource_id else None,
        scanned_by=str(scanned_by.id) if scanned_by else None,
    )
    publish_change(
        "checkin", "created", registration.id, event_id=registration.event_id, resource_id=resource_id
    )
    return _result_for(db, registration, now, resource_id)


def scan(db: Session, raw: str, scanned_by: User | None = None, event_id: Any = None) -> CheckInResult:
    if scanned_by is not None and event_id is not None:
        event = db.get(Event, event_id)
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
        require_manage_permission(scanned_by, event)

    try:
        registration = resolve_token(db, raw, event_id=event_id)
    except InvalidTokenError:
        CHECKINS.labels(outcome="invalid").inc()
        logger.info("checkin_token_rejected")
        raise
    if scanned_by is not None and event_id is None:
        require_manage_permission(scanned_by, db.get(Event, registration.event_id))
    return check_in(db, registration, scanned_by)


def check_in_registration(db: Session, user: User, registration_id: Any) -> CheckInResult:
    """Desk check-in from the organizer's attendee list."""
    registration = db.get(Registration, registration_id, populate_existing=True)
    if not registration:
        raise NotFoundError(ErrorCode.REGISTRATION_NOT_FOUND.value, "registration not found")
    event = db.get(Event, registration.event_id)
    require_manage_permission(user, event)
    if registration.checked_in_at is not None:
        CHECKINS.labels(outcome="duplicate").inc()
        raise AlreadyCheckedInError(registration.checked_in_at, registration.id)
    if registration.status != RegistrationStatus.CONFIRMED:
        raise InvalidTokenError("registration is not confirmed")
    return check_in(db, registration, user)


def list_checkins(db: Session, user: User, event_id: Any) -> list[CheckIn]:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    require_manage_permission(user, event)
    return list(
        db.scalars(
            select(CheckIn).where(CheckIn.event_id == event.id).order_by(CheckIn.checked_in_at)
        ).all()
    )
