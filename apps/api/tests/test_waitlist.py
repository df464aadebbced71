from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from ticketing.api.v1.schemas import EventUpdate, TicketTypeCreate
from ticketing.db import SessionLocal
from ticketing.models import Event, Registration, User
from ticketing.models.registration import RegistrationStatus
from ticketing.services import events_service, registration_service, waitlist_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import NotFoundError
from ticketing.worker.tasks import promote_waitlist


def _status(db, registration_id) -> RegistrationStatus:
    return db.get(Registration, registration_id, populate_existing=True).status


def _confirmed_count(db, event_id) -> int:
    return db.get(Event, event_id, populate_existing=True).confirmed_count


def test_cancellation_promotes_in_arrival_order(db_session, make_user, make_event):
    event, ticket = make_event(capacity=2)
    a, b, c, d = (make_user(f"{name}@example.com") for name in "abcd")
    reg_a, reg_b, reg_c, reg_d = (
        registration_service.register(db_session, u, event.id, ticket.id) for u in (a, b, c, d)
    )
    assert reg_c.status == RegistrationStatus.WAITLISTED
    assert reg_d.status == RegistrationStatus.WAITLISTED

    registration_service.cancel(db_session, a, reg_a.id)

    assert _status(db_session, reg_c.id) == RegistrationStatus.CONFIRMED
    assert _status(db_session, reg_d.id) == RegistrationStatus.WAITLISTED
    assert _confirmed_count(db_session, event.id) == 2

    registration_service.cancel(db_session, b, reg_b.id)

    assert _status(db_session, reg_d.id) == RegistrationStatus.CONFIRMED
    assert _confirmed_count(db_session, event.id) == 2


def test_cancelling_waitlisted_promotes_nobody(db_session, make_user, make_event):
    event, ticket = make_event(capacity=1)
    a, b, c = (make_user(f"{name}@example.com") for name in "abc")
    registration_service.register(db_session, a, event.id, ticket.id)
    reg_b = registration_service.register(db_session, b, event.id, ticket.id)
    reg_c = registration_service.register(db_session, c, event.id, ticket.id)

    registration_service.cancel(db_session, b, reg_b.id)

    assert _status(db_session, reg_c.id) == RegistrationStatus.WAITLISTED
    assert _confirmed_count(db_session, event.id) == 1


def test_promote_next_without_room_or_candidates(db_session, make_user, make_event):
    event, ticket = make_event(capacity=1)
    assert waitlist_service.promote_next(db_session, event.id) is None

    a, b = make_user("a@example.com"), make_user("b@example.com")
    registration_service.register(db_session, a, event.id, ticket.id)
    reg_b = registration_service.register(db_session, b, event.id, ticket.id)

    assert waitlist_service.promote_next(db_session, event.id) is None
    assert _status(db_session, reg_b.id) == RegistrationStatus.WAITLISTED
    assert _confirmed_count(db_session, event.id) == 1


def test_promotion_skips_sold_out_ticket_types(db_session, organizer, make_user, make_event):
    event, general = make_event(capacity=2)
    vip = events_service.add_ticket_type(
        db_session, organizer, event.id, TicketTypeCreate(name="VIP", capacity=1)
    )
    a, b, c, d = (make_user(f"{name}@example.com") for name in "abcd")
    registration_service.register(db_session, a, event.id, vip.id)
    reg_b = registration_service.register(db_session, b, event.id, general.id)
    reg_c = registration_service.register(db_session, c, event.id, vip.id)
    reg_d = registration_service.register(db_session, d, event.id, general.id)
    assert reg_c.status == RegistrationStatus.WAITLISTED

    registration_service.cancel(db_session, b, reg_b.id)

    # The VIP allotment is exhausted, so the later general ticket moves up.
    assert _status(db_session, reg_c.id) == RegistrationStatus.WAITLISTED
    assert _status(db_session, reg_d.id) == RegistrationStatus.CONFIRMED
    assert _confirmed_count(db_session, event.id) == 2


def test_failed_promotion_keeps_cancellation_and_defers(
    db_session, make_user, make_event, monkeypatch, no_worker
):
    event, ticket = make_event(capacity=1)
    a, b = make_user("a@example.com"), make_user("b@example.com")
    reg_a = registration_service.register(db_session, a, event.id, ticket.id)
    reg_b = registration_service.register(db_session, b, event.id, ticket.id)

    def _unavailable(db, event_id):
        raise OperationalError("UPDATE events", {}, Exception("database is unavailable"))

    monkeypatch.setattr(waitlist_service, "promote_next", _unavailable)

    cancelled = registration_service.cancel(db_session, a, reg_a.id)

    assert cancelled.status == RegistrationStatus.CANCELLED
    assert _status(db_session, reg_a.id) == RegistrationStatus.CANCELLED
    assert _status(db_session, reg_b.id) == RegistrationStatus.WAITLISTED
    assert _confirmed_count(db_session, event.id) == 0
    assert no_worker == [str(event.id)]


def test_promotion_for_vanished_event_keeps_cancellation(
    db_session, make_user, make_event, monkeypatch, no_worker
):
    event, ticket = make_event(capacity=1)
    a, b = make_user("a@example.com"), make_user("b@example.com")
    reg_a = registration_service.register(db_session, a, event.id, ticket.id)
    registration_service.register(db_session, b, event.id, ticket.id)

    def _event_gone(db, event_id):
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")

    monkeypatch.setattr(waitlist_service, "promote_next", _event_gone)

    cancelled = registration_service.cancel(db_session, a, reg_a.id)

    assert cancelled.status == RegistrationStatus.CANCELLED
    assert _status(db_session, reg_a.id) == RegistrationStatus.CANCELLED
    assert no_worker == []


def test_concurrent_cancellations_promote_distinct_entries(db_session, make_user, make_event):
    event, ticket = make_event(capacity=2)
    users = [make_user(f"{name}@example.com") for name in "abcde"]
    regs = [registration_service.register(db_session, u, event.id, ticket.id) for u in users]
    pairs = [(users[i].id, regs[i].id) for i in (0, 1)]
    barrier = threading.Barrier(len(pairs))

    def _cancel(pair):
        user_id, registration_id = pair
        db = SessionLocal()
        try:
            user = db.get(User, user_id)
            barrier.wait()
            return registration_service.cancel(db, user, registration_id).status
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = list(executor.map(_cancel, pairs))

    assert outcomes == [RegistrationStatus.CANCELLED, RegistrationStatus.CANCELLED]
    assert _status(db_session, regs[2].id) == RegistrationStatus.CONFIRMED
    assert _status(db_session, regs[3].id) == RegistrationStatus.CONFIRMED
    assert _status(db_session, regs[4].id) == RegistrationStatus.WAITLISTED
    assert _confirmed_count(db_session, event.id) == 2


def test_raising_capacity_fills_from_waitlist(db_session, organizer, make_user, make_event):
    event, ticket = make_event(capacity=1)
    users = [make_user(f"{name}@example.com") for name in "abcd"]
    regs = [registration_service.register(db_session, u, event.id, ticket.id) for u in users]

    events_service.update_event(db_session, organizer, event.id, EventUpdate(capacity=3))

    assert [_status(db_session, r.id) for r in regs] == [
        RegistrationStatus.CONFIRMED,
        RegistrationStatus.CONFIRMED,
        RegistrationStatus.CONFIRMED,
        RegistrationStatus.WAITLISTED,
    ]
    assert _confirmed_count(db_session, event.id) == 3


def test_waitlist_endpoints(client: TestClient, db_session, organizer, make_user, make_event, auth_headers):
    event, ticket = make_event(capacity=1)
    a, b, c = (make_user(f"{name}@example.com") for name in "abc")
    for user in (a, b, c):
        registration_service.register(db_session, user, event.id, ticket.id)

    listing = client.get(f"/v1/events/{event.id}/waitlist", headers=auth_headers(organizer))
    assert listing.status_code == 200
    assert [(e["position"], e["user_id"]) for e in listing.json()] == [
        (1, str(b.id)),
        (2, str(c.id)),
    ]

    forbidden = client.get(f"/v1/events/{event.id}/waitlist", headers=auth_headers(a))
    assert forbidden.status_code == 403

    full = client.post(f"/v1/events/{event.id}/waitlist/promote", headers=auth_headers(organizer))
    assert full.status_code == 200
    assert full.json() == {"promoted": False, "registration": None}

    # Capacity raised out of band; a manual promotion picks up the slack.
    db_session.execute(update(Event).where(Event.id == event.id).values(capacity=2))
    db_session.commit()

    promoted = client.post(f"/v1/events/{event.id}/waitlist/promote", headers=auth_headers(organizer))
    body = promoted.json()
    assert body["promoted"] is True
    assert body["registration"]["user_id"] == str(b.id)
    assert body["registration"]["status"] == "confirmed"

    remaining = client.get(f"/v1/events/{event.id}/waitlist", headers=auth_headers(organizer))
    assert [e["position"] for e in remaining.json()] == [1]


def test_worker_task_retries_promotion(db_session, make_user, make_event):
    event, ticket = make_event(capacity=1)
    a, b = make_user("a@example.com"), make_user("b@example.com")
    registration_service.register(db_session, a, event.id, ticket.id)
    reg_b = registration_service.register(db_session, b, event.id, ticket.id)
    db_session.execute(update(Event).where(Event.id == event.id).values(capacity=2))
    db_session.commit()

    result = promote_waitlist(str(event.id))

    assert result == {"event_id": str(event.id), "registration_id": str(reg_b.id)}
    assert _status(db_session, reg_b.id) == RegistrationStatus.CONFIRMED
    assert promote_waitlist(str(event.id))["registration_id"] is None
