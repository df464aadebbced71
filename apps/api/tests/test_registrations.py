from __future__ import annotations

import json
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from ticketing.main import app
from ticketing.models import Event, Registration, TicketType
from ticketing.models.event import TicketKind
from ticketing.models.registration import RegistrationStatus
from ticketing.models.user import UserRole
from ticketing.services import checkin_service, inventory_service, registration_service
from ticketing.services.exceptions import (
    CapacityExceededError,
    ConflictError,
    DuplicateRegistrationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


def _confirmed_count(db, event_id) -> int:
    return db.get(Event, event_id, populate_existing=True).confirmed_count


def _count(db, event_id, status: RegistrationStatus) -> int:
    return db.scalar(
        select(func.count())
        .select_from(Registration)
        .where(Registration.event_id == event_id, Registration.status == status)
    )


def test_first_registration_is_confirmed(db_session, make_user, make_event):
    event, ticket = make_event(capacity=2)
    alice = make_user("alice@example.com")

    registration = registration_service.register(db_session, alice, event.id, ticket.id)

    assert registration.status == RegistrationStatus.CONFIRMED
    assert registration.source == "free"
    assert _confirmed_count(db_session, event.id) == 1
    assert db_session.get(TicketType, ticket.id, populate_existing=True).sold_count == 1


def test_zero_capacity_waitlists_immediately(db_session, make_user, make_event):
    event, ticket = make_event(capacity=0)
    alice = make_user("alice@example.com")

    registration = registration_service.register(db_session, alice, event.id, ticket.id)

    assert registration.status == RegistrationStatus.WAITLISTED
    assert _confirmed_count(db_session, event.id) == 0


def test_registration_token_carries_identifiers(db_session, make_user, make_event):
    event, ticket = make_event()
    alice = make_user("alice@example.com")

    registration = registration_service.register(db_session, alice, event.id, ticket.id)
    payload = json.loads(registration.qr_token)

    assert payload["registration_id"] == str(registration.id)
    assert payload["event_id"] == str(event.id)
    assert payload["user_id"] == str(alice.id)
    assert payload["ticket_type_id"] == str(ticket.id)
    assert "timestamp" in payload


def test_last_seat_goes_to_exactly_one_of_two(make_user, make_event, auth_headers):
    event, ticket = make_event(capacity=1)
    users = [make_user("p@example.com"), make_user("q@example.com")]
    barrier = threading.Barrier(len(users))

    def _register(user):
        with TestClient(app) as local_client:
            barrier.wait()
            return local_client.post(
                f"/v1/events/{event.id}/registrations",
                json={"ticket_type_id": str(ticket.id)},
                headers=auth_headers(user),
            )

    with ThreadPoolExecutor(max_workers=2) as executor:
        responses = list(executor.map(_register, users))

    assert [r.status_code for r in responses] == [201, 201]
    statuses = sorted(r.json()["status"] for r in responses)
    assert statuses == ["confirmed", "waitlisted"]


def test_concurrent_registrations_never_exceed_capacity(db_session, make_user, make_event, auth_headers):
    event, ticket = make_event(capacity=3)
    users = [make_user(f"fan{i}@example.com") for i in range(8)]
    barrier = threading.Barrier(len(users))

    def _register(user):
        with TestClient(app) as local_client:
            barrier.wait()
            return local_client.post(
                f"/v1/events/{event.id}/registrations",
                json={"ticket_type_id": str(ticket.id)},
                headers=auth_headers(user),
            )

    with ThreadPoolExecutor(max_workers=len(users)) as executor:
        responses = list(executor.map(_register, users))

    assert all(r.status_code == 201 for r in responses)
    assert _count(db_session, event.id, RegistrationStatus.CONFIRMED) == 3
    assert _count(db_session, event.id, RegistrationStatus.WAITLISTED) == 5
    assert _confirmed_count(db_session, event.id) == 3


def test_duplicate_registration_rejected(db_session, make_user, make_event):
    event, ticket = make_event(capacity=0)
    alice = make_user("alice@example.com")
    registration_service.register(db_session, alice, event.id, ticket.id)

    with pytest.raises(DuplicateRegistrationError) as exc:
        registration_service.register(db_session, alice, event.id, ticket.id)
    assert exc.value.code == "DUPLICATE_REGISTRATION"


def test_can_register_again_after_cancelling(db_session, make_user, make_event):
    event, ticket = make_event(capacity=5)
    alice = make_user("alice@example.com")
    first = registration_service.register(db_session, alice, event.id, ticket.id)
    registration_service.cancel(db_session, alice, first.id)

    second = registration_service.register(db_session, alice, event.id, ticket.id)

    assert second.id != first.id
    assert second.status == RegistrationStatus.CONFIRMED
    assert _confirmed_count(db_session, event.id) == 1


def test_paid_ticket_requires_order(db_session, make_user, make_event):
    event, ticket = make_event(kind=TicketKind.PAID, price="500")
    alice = make_user("alice@example.com")

    with pytest.raises(ValidationError) as exc:
        registration_service.register(db_session, alice, event.id, ticket.id)
    assert exc.value.code == "PAYMENT_REQUIRED"


def test_unknown_event_or_ticket_type(db_session, make_user, make_event):
    event, _ = make_event()
    _, other_ticket = make_event(title="Other")
    alice = make_user("alice@example.com")

    with pytest.raises(NotFoundError):
        registration_service.register(db_session, alice, uuid.uuid4(), other_ticket.id)
    with pytest.raises(NotFoundError) as exc:
        registration_service.register(db_session, alice, event.id, other_ticket.id)
    assert exc.value.code == "TICKET_TYPE_NOT_FOUND"


def test_venue_capacity_binds_when_smaller(db_session, make_user, make_event):
    room = inventory_service.create_resource(db_session, "Small room", "room", 1)
    event, ticket = make_event(capacity=10, venue_id=room.id)
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")

    first = registration_service.register(db_session, alice, event.id, ticket.id)
    second = registration_service.register(db_session, bob, event.id, ticket.id)

    assert first.status == RegistrationStatus.CONFIRMED
    assert second.status == RegistrationStatus.WAITLISTED


def test_override_capacity_admits_beyond_limit(db_session, make_user, make_event):
    event, ticket = make_event(capacity=1, override_capacity=True)
    users = [make_user(f"guest{i}@example.com") for i in range(3)]

    statuses = {
        registration_service.register(db_session, u, event.id, ticket.id).status for u in users
    }

    assert statuses == {RegistrationStatus.CONFIRMED}
    assert _confirmed_count(db_session, event.id) == 3


def test_sold_out_ticket_type_leaves_counts_unchanged(db_session, make_user, make_event):
    event, ticket = make_event(capacity=10, ticket_capacity=1)
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    registration_service.register(db_session, alice, event.id, ticket.id)

    with pytest.raises(CapacityExceededError) as exc:
        registration_service.register(db_session, bob, event.id, ticket.id)

    assert exc.value.code == "TICKET_SOLD_OUT"
    assert _confirmed_count(db_session, event.id) == 1
    assert db_session.get(TicketType, ticket.id, populate_existing=True).sold_count == 1


def test_cancel_confirmed_releases_slot(db_session, make_user, make_event):
    event, ticket = make_event(capacity=1)
    alice = make_user("alice@example.com")
    registration = registration_service.register(db_session, alice, event.id, ticket.id)

    cancelled = registration_service.cancel(db_session, alice, registration.id)

    assert cancelled.status == RegistrationStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert _confirmed_count(db_session, event.id) == 0
    assert db_session.get(TicketType, ticket.id, populate_existing=True).sold_count == 0


def test_cancel_twice_is_not_found(db_session, make_user, make_event):
    event, ticket = make_event()
    alice = make_user("alice@example.com")
    registration = registration_service.register(db_session, alice, event.id, ticket.id)
    registration_service.cancel(db_session, alice, registration.id)

    with pytest.raises(NotFoundError):
        registration_service.cancel(db_session, alice, registration.id)
    assert _confirmed_count(db_session, event.id) == 0


def test_only_owner_or_organizer_cancels(db_session, organizer, make_user, make_event):
    event, ticket = make_event(capacity=5)
    alice = make_user("alice@example.com")
    mallory = make_user("mallory@example.com")
    first = registration_service.register(db_session, alice, event.id, ticket.id)

    with pytest.raises(PermissionDeniedError):
        registration_service.cancel(db_session, mallory, first.id)

    cancelled = registration_service.cancel(db_session, organizer, first.id)
    assert cancelled.status == RegistrationStatus.CANCELLED


def test_checked_in_registration_cannot_be_cancelled(db_session, organizer, make_user, make_event):
    event, ticket = make_event(capacity=5)
    alice = make_user("alice@example.com")
    registration = registration_service.register(db_session, alice, event.id, ticket.id)
    checkin_service.check_in_registration(db_session, organizer, registration.id)

    with pytest.raises(ConflictError) as exc:
        registration_service.cancel(db_session, alice, registration.id)
    assert exc.value.code == "REGISTRATION_CHECKED_IN"
    assert _confirmed_count(db_session, event.id) == 1


def test_event_stats(db_session, organizer, make_user, make_event):
    event, ticket = make_event(capacity=2)
    users = [make_user(f"u{i}@example.com") for i in range(4)]
    registrations = [registration_service.register(db_session, u, event.id, ticket.id) for u in users]
    registration_service.cancel(db_session, users[3], registrations[3].id)
    checkin_service.check_in_registration(db_session, organizer, registrations[0].id)

    stats = registration_service.event_stats(db_session, organizer, event.id)

    assert stats["capacity"] == 2
    assert stats["confirmed"] == 2
    assert stats["waitlisted"] == 1
    assert stats["cancelled"] == 1
    assert stats["checked_in"] == 1
    assert stats["remaining"] == 0

    with pytest.raises(PermissionDeniedError):
        registration_service.event_stats(db_session, users[0], event.id)


def test_registration_listing_requires_manager(db_session, organizer, make_user, make_event):
    event, ticket = make_event(capacity=1)
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    registration_service.register(db_session, alice, event.id, ticket.id)
    registration_service.register(db_session, bob, event.id, ticket.id)

    everyone = registration_service.list_for_event(db_session, organizer, event.id)
    waiting = registration_service.list_for_event(
        db_session, organizer, event.id, status=RegistrationStatus.WAITLISTED
    )

    assert [r.user_id for r in everyone] == [alice.id, bob.id]
    assert [r.user_id for r in waiting] == [bob.id]
    with pytest.raises(PermissionDeniedError):
        registration_service.list_for_event(db_session, alice, event.id)

    rival = make_user("rival@example.com", UserRole.ORGANIZER)
    with pytest.raises(PermissionDeniedError):
        registration_service.list_for_event(db_session, rival, event.id)


def test_registration_api_flow(client: TestClient, make_user, make_event, auth_headers):
    event, ticket = make_event(capacity=1)
    alice = make_user("alice@example.com")

    created = client.post(
        f"/v1/events/{event.id}/registrations",
        json={"ticket_type_id": str(ticket.id)},
        headers=auth_headers(alice),
    )
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "confirmed"
    assert json.loads(body["qr_token"])["registration_id"] == body["id"]

    again = client.post(
        f"/v1/events/{event.id}/registrations",
        json={"ticket_type_id": str(ticket.id)},
        headers=auth_headers(alice),
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "DUPLICATE_REGISTRATION"

    mine = client.get("/v1/me/registrations", headers=auth_headers(alice))
    assert [r["id"] for r in mine.json()] == [body["id"]]

    qr = client.get(f"/v1/registrations/{body['id']}/qr.png", headers=auth_headers(alice))
    assert qr.status_code == 200
    assert qr.headers["content-type"] == "image/png"
    assert qr.content.startswith(b"\x89PNG")

    cancelled = client.post(f"/v1/registrations/{body['id']}/cancel", headers=auth_headers(alice))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    gone = client.post(f"/v1/registrations/{body['id']}/cancel", headers=auth_headers(alice))
    assert gone.status_code == 404
