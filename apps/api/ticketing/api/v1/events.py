from uuid import UUID

from fastapi import APIRouter, Query, Response

from ticketing.api.v1.schemas import (
    AllocationIn,
    AllocationOut,
    CheckInRecordOut,
    EventCreate,
    EventListOut,
    EventOut,
    EventStatsOut,
    EventUpdate,
    PromotionOut,
    RegistrationCreate,
    RegistrationCreatedOut,
    RegistrationOut,
    TicketTypeCreate,
    TicketTypeOut,
    WaitlistEntryOut,
)
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.models.registration import RegistrationStatus
from ticketing.services import (
    allocation_service,
    checkin_service,
    events_service,
    registration_service,
    waitlist_service,
)

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventOut, status_code=201)
def create_event(payload: EventCreate, user: CurrentUser, db: DBSession):
    return events_service.create_event(db, user, payload)


@router.get("", response_model=EventListOut)
def list_events(
    user: CurrentUser,
    db: DBSession,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    items, total = events_service.list_events(db, page=page, page_size=page_size)
    return EventListOut(items=items, page=page, page_size=page_size, total=total)


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: UUID, user: CurrentUser, db: DBSession):
    return events_service.get_event(db, event_id)


@router.patch("/{event_id}", response_model=EventOut)
def update_event(event_id: UUID, payload: EventUpdate, user: CurrentUser, db: DBSession):
    return events_service.update_event(db, user, event_id, payload)


@router.delete("/{event_id}", status_code=204)
def delete_event(event_id: UUID, user: CurrentUser, db: DBSession):
    events_service.delete_event(db, user, event_id)
    return Response(status_code=204)


@router.post("/{event_id}/ticket-types", response_model=TicketTypeOut, status_code=201)
def add_ticket_type(event_id: UUID, payload: TicketTypeCreate, user: CurrentUser, db: DBSession):
    return events_service.add_ticket_type(db, user, event_id, payload)


@router.get("/{event_id}/ticket-types", response_model=list[TicketTypeOut])
def list_ticket_types(event_id: UUID, user: CurrentUser, db: DBSession):
    return events_service.list_ticket_types(db, event_id)


@router.post("/{event_id}/allocations", response_model=AllocationOut, status_code=201)
def allocate_resource(event_id: UUID, payload: AllocationIn, user: CurrentUser, db: DBSession):
    return allocation_service.allocate(
        db, user, event_id, payload.resource_id, quantity=payload.quantity, notes=payload.notes
    )


@router.get("/{event_id}/allocations", response_model=list[AllocationOut])
def list_allocations(event_id: UUID, user: CurrentUser, db: DBSession):
    events_service.get_event(db, event_id)
    return allocation_service.list_allocations(db, event_id=event_id)


@router.post("/{event_id}/registrations", response_model=RegistrationCreatedOut, status_code=201)
def register(event_id: UUID, payload: RegistrationCreate, user: CurrentUser, db: DBSession):
    return registration_service.register(db, user, event_id, payload.ticket_type_id)


@router.get("/{event_id}/registrations", response_model=list[RegistrationOut])
def list_registrations(
    event_id: UUID,
    user: CurrentUser,
    db: DBSession,
    status: RegistrationStatus | None = None,
):
    return registration_service.list_for_event(db, user, event_id, status=status)


@router.get("/{event_id}/waitlist", response_model=list[WaitlistEntryOut])
def get_waitlist(event_id: UUID, user: CurrentUser, db: DBSession):
    waiting = waitlist_service.list_waitlist(db, user, event_id)
    return [
        WaitlistEntryOut(
            position=position,
            registration_id=r.id,
            user_id=r.user_id,
            ticket_type_id=r.ticket_type_id,
            created_at=r.created_at,
        )
        for position, r in enumerate(waiting, start=1)
    ]


@router.post("/{event_id}/waitlist/promote", response_model=PromotionOut)
def promote_waitlist(event_id: UUID, user: CurrentUser, db: DBSession):
    promoted = waitlist_service.promote_for_organizer(db, user, event_id)
    return PromotionOut(
        promoted=promoted is not None,
        registration=RegistrationOut.model_validate(promoted) if promoted else None,
    )


@router.get("/{event_id}/checkins", response_model=list[CheckInRecordOut])
def list_checkins(event_id: UUID, user: CurrentUser, db: DBSession):
    return checkin_service.list_checkins(db, user, event_id)


@router.get("/{event_id}/stats", response_model=EventStatsOut)
def event_stats(event_id: UUID, user: CurrentUser, db: DBSession):
    return registration_service.event_stats(db, user, event_id)
