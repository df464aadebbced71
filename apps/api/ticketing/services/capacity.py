"""Adjust-if-sufficient counters shared by registration, waitlist and orders.

Each helper is one UPDATE whose rowcount tells the caller whether the slot
was obtained. None of them commit.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ticketing.models import Event, Resource, TicketType


def effective_capacity(db: Session, event: Event) -> int | None:
    """min(event capacity, venue capacity) over whichever is set; None is unbounded."""
    venue_capacity = None
    if event.venue_id is not None:
        venue = db.get(Resource, event.venue_id)
        # A venue without declared seating does not bind.
        if venue is not None and venue.total_capacity > 0:
            venue_capacity = venue.total_capacity

    limits = [c for c in (event.capacity, venue_capacity) if c is not None]
    return min(limits) if limits else None


def claim_event_slot(db: Session, event: Event, capacity: int | None) -> bool:
    stmt = update(Event).where(Event.id == event.id)
    if capacity is not None and not event.override_capacity:
        stmt = stmt.where(Event.confirmed_count < capacity)
    stmt = stmt.values(confirmed_count=Event.confirmed_count + 1)
    result = db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def force_event_slot(db: Session, event_id: Any) -> None:
    db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(confirmed_count=Event.confirmed_count + 1)
        .execution_options(synchronize_session=False)
    )


def release_event_slot(db: Session, event_id: Any) -> None:
    db.execute(
        update(Event)
        .where(Event.id == event_id, Event.confirmed_count > 0)
        .values(confirmed_count=Event.confirmed_count - 1)
        .execution_options(synchronize_session=False)
    )


def claim_ticket(db: Session, ticket_type_id: Any) -> bool:
    result = db.execute(
        update(TicketType)
        .where(
            TicketType.id == ticket_type_id,
            or_(TicketType.capacity.is_(None), TicketType.sold_count < TicketType.capacity),
        )
        .values(sold_count=TicketType.sold_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def force_ticket(db: Session, ticket_type_id: Any) -> None:
    db.execute(
        update(TicketType)
        .where(TicketType.id == ticket_type_id)
        .values(sold_count=TicketType.sold_count + 1)
        .execution_options(synchronize_session=False)
    )


def release_ticket(db: Session, ticket_type_id: Any) -> None:
    db.execute(
        update(TicketType)
        .where(TicketType.id == ticket_type_id, TicketType.sold_count > 0)
        .values(sold_count=TicketType.sold_count - 1)
        .execution_options(synchronize_session=False)
    )
