from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketing.change_feed import publish_change
from ticketing.core.metrics import ALLOCATIONS
from ticketing.models import Allocation, Event, Resource, User
from ticketing.services import inventory_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    CapacityExceededError,
    InsufficientCapacityError,
    NotFoundError,
    ValidationError,
)
from ticketing.services.permissions import require_manage_permission

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AllocationRequest:
    resource_id: Any
    quantity: int = 1
    notes: str | None = None


def _lock_event(db: Session, event_id: Any) -> Event:
    event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    return event


def allocate_one(
    db: Session,
    event: Event,
    organizer_id: Any,
    request: AllocationRequest,
) -> Allocation:
    resource = db.get(Resource, request.resource_id)
    if not resource:
        raise NotFoundError(ErrorCode.RESOURCE_NOT_FOUND.value, "resource not found")

    venue = inventory_service.is_venue(resource)
    quantity = 1 if venue else request.quantity
    if quantity < 1:
        raise ValidationError(ErrorCode.INVALID_QUANTITY.value, "quantity must be at least 1")

    try:
        inventory_service.reserve(db, resource.id, quantity, event.id)
    except CapacityExceededError as exc:
        raise InsufficientCapacityError(
            f"requested {quantity} of {resource.name!r}, {exc.available or 0} available",
            available=exc.available,
        ) from exc

    allocation = Allocation(
        resource_id=resource.id,
        event_id=event.id,
        organizer_id=organizer_id,
        quantity=quantity,
        notes=request.notes,
    )
    db.add(allocation)

    if venue and event.venue_id is None:
        event.venue_id = resource.id
        db.add(event)

    db.flush()
    return allocation


def allocate(
    db: Session,
    organizer: User,
    event_id: Any,
    resource_id: Any,
    quantity: int = 1,
    notes: str | None = None,
) -> Allocation:
    """Reserve inventory and record it in the ledger as one unit."""
    try:
        event = _lock_event(db, event_id)
        require_manage_permission(organizer, event)
        allocation = allocate_one(
            db, event, organizer.id, AllocationRequest(resource_id, quantity, notes)
        )
        db.commit()
    except Exception:
        db.rollback()
        ALLOCATIONS.labels(outcome="rejected").inc()
        raise

    db.refresh(allocation)
    ALLOCATIONS.labels(outcome="allocated").inc()
    logger.info(
        "allocation_created",
        allocation_id=str(allocation.id),
        event_id=str(event_id),
        resource_id=str(resource_id),
        quantity=allocation.quantity,
    )
    publish_change("allocation", "created", allocation.id, event_id=event_id, resource_id=resource_id)
    return allocation


def release_all(db: Session, event_id: Any) -> int:
    """Return every allocation of the event to inventory and drop the rows.

    Does not commit. Allocations whose resource has been deleted are skipped.
    """
    allocations = db.scalars(select(Allocation).where(Allocation.event_id == event_id)).all()
    released = 0
    for allocation in allocations:
        if allocation.resource_id is None or not inventory_service.release(
            db, allocation.resource_id, allocation.quantity
        ):
            logger.warning(
                "allocation_resource_missing",
                allocation_id=str(allocation.id),
                event_id=str(event_id),
            )
        else:
            released += 1
        db.delete(allocation)

    db.flush()
    return released


def remove_allocation(db: Session, organizer: User, allocation_id: Any) -> None:
    allocation = db.get(Allocation, allocation_id)
    if not allocation:
        raise NotFoundError(ErrorCode.ALLOCATION_NOT_FOUND.value, "allocation not found")

    try:
        event = _lock_event(db, allocation.event_id)
        require_manage_permission(organizer, event)

        if allocation.resource_id is not None:
            if not inventory_service.release(db, allocation.resource_id, allocation.quantity):
                logger.warning("allocation_resource_missing", allocation_id=str(allocation.id))
            if event.venue_id == allocation.resource_id:
                event.venue_id = None
                db.add(event)

        db.delete(allocation)
        db.commit()
    except Exception:
        db.rollback()
        raise

    publish_change("allocation", "deleted", allocation_id, event_id=allocation.event_id)


def replace_allocations(
    db: Session,
    organizer: User,
    event_id: Any,
    requests: list[AllocationRequest],
) -> list[Allocation]:
    """Swap the event's allocations for a new set; all or nothing."""
    try:
        event = _lock_event(db, event_id)
        require_manage_permission(organizer, event)
        release_all(db, event.id)
        event.venue_id = None
        allocations = [allocate_one(db, event, organizer.id, r) for r in requests]
        db.commit()
    except Exception:
        db.rollback()
        raise

    for allocation in allocations:
        db.refresh(allocation)
    publish_change("allocation", "replaced", event_id, event_id=event_id)
    return allocations


def find_resource_for_event(db: Session, event_id: Any) -> Resource | None:
    """The resource check-ins are attributed to: the venue if any, else the oldest allocation."""
    event = db.get(Event, event_id)
    if event and event.venue_id:
        venue = db.get(Resource, event.venue_id)
        if venue:
            return venue

    return db.scalar(
        select(Resource)
        .join(Allocation, Allocation.resource_id == Resource.id)
        .where(Allocation.event_id == event_id)
        .order_by(Allocation.allocated_at, Allocation.id)
        .limit(1)
    )


def list_allocations(
    db: Session,
    event_id: Any | None = None,
    organizer_id: Any | None = None,
) -> list[Allocation]:
    stmt = select(Allocation).order_by(Allocation.allocated_at.desc())
    if event_id is not None:
        stmt = stmt.where(Allocation.event_id == event_id)
    if organizer_id is not None:
        stmt = stmt.where(Allocation.organizer_id == organizer_id)
    return list(db.scalars(stmt).all())
