from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ticketing.api.v1.schemas.events import EventCreate, EventUpdate, TicketTypeCreate
from ticketing.change_feed import publish_change
from ticketing.models import Event, TicketType, User
from ticketing.models.event import TicketKind
from ticketing.services import allocation_service, waitlist_service
from ticketing.services.allocation_service import AllocationRequest
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import NotFoundError, ValidationError
from ticketing.services.permissions import require_manage_permission, require_organizer

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _validate_window(starts_at: datetime, ends_at: datetime) -> None:
    if _as_utc(ends_at) <= _as_utc(starts_at):
        raise ValidationError(ErrorCode.INVALID_TIME_WINDOW.value, "ends_at must be after starts_at")


def _validate_price(kind: TicketKind, price: Decimal) -> None:
    if kind == TicketKind.FREE and price != 0:
        raise ValidationError(ErrorCode.INVALID_PRICE.value, "free tickets must have price 0")
    if kind == TicketKind.PAID and price <= 0:
        raise ValidationError(ErrorCode.INVALID_PRICE.value, "paid tickets need a positive price")
    if price < 0:
        raise ValidationError(ErrorCode.INVALID_PRICE.value, "price cannot be negative")


def _allocation_requests(payload: EventCreate | EventUpdate, venue_id: Any = None) -> list[AllocationRequest]:
    requests: list[AllocationRequest] = []
    if venue_id is not None:
        requests.append(AllocationRequest(venue_id))
    for item in payload.resources or []:
        if venue_id is not None and item.resource_id == venue_id:
            continue
        requests.append(AllocationRequest(item.resource_id, item.quantity, item.notes))
    return requests


def _new_ticket_type(event: Event, payload: TicketTypeCreate) -> TicketType:
    _validate_price(payload.kind, payload.price)
    return TicketType(
        event_id=event.id,
        name=payload.name,
        kind=payload.kind,
        price=payload.price,
        capacity=payload.capacity,
    )


def get_event(db: Session, event_id: Any) -> Event:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    return event


def list_events(db: Session, page: int = 1, page_size: int = 20) -> tuple[list[Event], int]:
    total = int(db.scalar(select(func.count()).select_from(Event)) or 0)
    items = db.scalars(
        select(Event)
        .order_by(Event.starts_at, Event.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(items), total


def create_event(db: Session, organizer: User, payload: EventCreate) -> Event:
    """Create the event with its ticket types and resource allocations as one unit."""
    require_organizer(organizer)
    _validate_window(payload.starts_at, payload.ends_at)

    event = Event(
        title=payload.title,
        description=payload.description,
        starts_at=payload.starts_at,
        ends_at=payload.ends_at,
        capacity=payload.capacity,
        override_capacity=payload.override_capacity,
        organizer_id=organizer.id,
    )
    try:
        db.add(event)
        db.flush()
        for item in payload.ticket_types:
            db.add(_new_ticket_type(event, item))
        for request in _allocation_requests(payload, payload.venue_id):
            allocation_service.allocate_one(db, event, organizer.id, request)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(event)
    logger.info("event_created", event_id=str(event.id), organizer_id=str(organizer.id))
    publish_change("event", "created", event.id)
    return event


def update_event(db: Session, organizer: User, event_id: Any, patch: EventUpdate) -> Event:
    patch_data = patch.model_dump(exclude_unset=True)
    resources = patch_data.pop("resources", None)

    try:
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
        require_manage_permission(organizer, event)

        _validate_window(
            patch_data.get("starts_at") or event.starts_at,
            patch_data.get("ends_at") or event.ends_at,
        )
        capacity_changed = resources is not None or bool(
            {"capacity", "override_capacity"} & set(patch_data)
        )

        for key in ("title", "description", "starts_at", "ends_at", "capacity", "override_capacity"):
            if key in patch_data:
                if key in {"title", "starts_at", "ends_at", "override_capacity"} and patch_data[key] is None:
                    continue
                setattr(event, key, patch_data[key])

        if resources is not None:
            allocation_service.release_all(db, event.id)
            event.venue_id = None
            for request in _allocation_requests(patch):
                allocation_service.allocate_one(db, event, organizer.id, request)

        db.add(event)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(event)
    logger.info("event_updated", event_id=str(event.id), fields=sorted(patch_data))
    publish_change("event", "updated", event.id)

    if capacity_changed:
        _fill_opened_slots(db, event)
    return event


def _fill_opened_slots(db: Session, event: Event) -> None:
    """Promote from the waitlist until the enlarged capacity is used up."""
    waiting = waitlist_service.count_waitlisted(db, event.id)
    for _ in range(waiting):
        if waitlist_service.promote_after_release(db, event.id) is None:
            break


def delete_event(db: Session, organizer: User, event_id: Any) -> None:
    """Give every allocated resource back, then drop the event."""
    try:
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
        require_manage_permission(organizer, event)

        released = allocation_service.release_all(db, event.id)
        db.delete(event)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("event_deleted", event_id=str(event_id), released_allocations=released)
    publish_change("event", "deleted", event_id)


def add_ticket_type(db: Session, organizer: User, event_id: Any, payload: TicketTypeCreate) -> TicketType:
    event = get_event(db, event_id)
    require_manage_permission(organizer, event)

    ticket_type = _new_ticket_type(event, payload)
    db.add(ticket_type)
    db.commit()
    db.refresh(ticket_type)
    return ticket_type


def list_ticket_types(db: Session, event_id: Any) -> list[TicketType]:
    event = get_event(db, event_id)
    return list(
        db.scalars(
            select(TicketType)
            .where(TicketType.event_id == event.id)
            .order_by(TicketType.created_at)
        ).all()
    )
