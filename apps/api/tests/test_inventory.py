from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select

from ticketing.db import SessionLocal
from ticketing.models import Allocation, Resource, User
from ticketing.models.resource import ResourceStatus
from ticketing.services import allocation_service, inventory_service
from ticketing.services.exceptions import (
    CapacityExceededError,
    ConflictError,
    InsufficientCapacityError,
    NotFoundError,
)
from ticketing.services.inventory_service import ResourceKind


def _fresh(db, resource_id) -> Resource:
    return db.get(Resource, resource_id, populate_existing=True)


def test_resource_kind_from_type_tag():
    assert inventory_service.resource_kind("hall") == ResourceKind.VENUE
    assert inventory_service.resource_kind("Equipment") == ResourceKind.EQUIPMENT
    assert inventory_service.resource_kind("service") == ResourceKind.EQUIPMENT
    assert inventory_service.resource_kind("rooftop") == ResourceKind.VENUE
    assert inventory_service.resource_kind(None) == ResourceKind.VENUE


def test_equipment_release_then_reserve_restores_capacity(db_session, make_event):
    event, _ = make_event()
    chairs = inventory_service.create_resource(db_session, "Chairs", "equipment", 10)

    inventory_service.reserve(db_session, chairs.id, 4, event.id)
    db_session.commit()
    assert _fresh(db_session, chairs.id).available_capacity == 6

    inventory_service.release(db_session, chairs.id, 4)
    db_session.commit()
    restored = _fresh(db_session, chairs.id)
    assert restored.available_capacity == 10
    assert restored.status == ResourceStatus.AVAILABLE
    assert restored.allocated_to is None

    inventory_service.reserve(db_session, chairs.id, 4, event.id)
    db_session.commit()
    assert _fresh(db_session, chairs.id).available_capacity == 6


def test_equipment_exhausted_is_marked_allocated(db_session, make_event):
    event, _ = make_event()
    mics = inventory_service.create_resource(db_session, "Mics", "equipment", 5)

    inventory_service.reserve(db_session, mics.id, 5, event.id)
    db_session.commit()
    exhausted = _fresh(db_session, mics.id)
    assert exhausted.available_capacity == 0
    assert exhausted.status == ResourceStatus.ALLOCATED
    assert exhausted.allocated_to == event.id

    with pytest.raises(CapacityExceededError) as exc:
        inventory_service.reserve(db_session, mics.id, 1, event.id)
    db_session.rollback()
    assert exc.value.available == 0
    assert _fresh(db_session, mics.id).available_capacity == 0


def test_release_is_clamped_to_total(db_session):
    mics = inventory_service.create_resource(db_session, "Mics", "equipment", 5)

    assert inventory_service.release(db_session, mics.id, 3) is True
    db_session.commit()
    assert _fresh(db_session, mics.id).available_capacity == 5


def test_release_of_missing_resource_reports_false(db_session):
    import uuid

    assert inventory_service.release(db_session, uuid.uuid4(), 1) is False


def test_venue_is_all_or_nothing(db_session, make_event):
    first, _ = make_event(title="First")
    second, _ = make_event(title="Second")
    hall = inventory_service.create_resource(db_session, "Main Hall", "hall", 200)

    inventory_service.reserve(db_session, hall.id, 1, first.id)
    db_session.commit()
    booked = _fresh(db_session, hall.id)
    assert booked.status == ResourceStatus.ALLOCATED
    assert booked.allocated_to == first.id

    with pytest.raises(CapacityExceededError):
        inventory_service.reserve(db_session, hall.id, 1, second.id)
    db_session.rollback()

    inventory_service.release(db_session, hall.id, 1)
    db_session.commit()
    freed = _fresh(db_session, hall.id)
    assert freed.status == ResourceStatus.AVAILABLE
    assert freed.allocated_to is None


def test_partial_allocation_scenario(db_session, organizer, make_event):
    event_a, _ = make_event(title="A")
    event_b, _ = make_event(title="B")
    kit = inventory_service.create_resource(db_session, "Speakers", "equipment", 5)

    allocation_service.allocate(db_session, organizer, event_a.id, kit.id, 3)

    with pytest.raises(InsufficientCapacityError) as exc:
        allocation_service.allocate(db_session, organizer, event_b.id, kit.id, 4)
    assert exc.value.available == 2
    assert exc.value.code == "INSUFFICIENT_CAPACITY"
    assert (
        db_session.scalar(
            select(func.count()).select_from(Allocation).where(Allocation.event_id == event_b.id)
        )
        == 0
    )
    assert _fresh(db_session, kit.id).available_capacity == 2

    allocation = allocation_service.allocate(db_session, organizer, event_b.id, kit.id, 2)
    assert allocation.quantity == 2
    drained = _fresh(db_session, kit.id)
    assert drained.available_capacity == 0
    assert drained.status == ResourceStatus.ALLOCATED


def test_concurrent_allocations_never_oversubscribe(db_session, organizer, make_event):
    event_ids = [make_event(title=f"Track {i}")[0].id for i in range(4)]
    kit = inventory_service.create_resource(db_session, "Projectors", "equipment", 5)
    organizer_id = organizer.id
    barrier = threading.Barrier(len(event_ids))

    def _allocate(event_id):
        db = SessionLocal()
        try:
            user = db.get(User, organizer_id)
            barrier.wait()
            allocation_service.allocate(db, user, event_id, kit.id, 2)
            return "allocated"
        except InsufficientCapacityError:
            return "rejected"
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=len(event_ids)) as executor:
        outcomes = list(executor.map(_allocate, event_ids))

    assert outcomes.count("allocated") == 2
    assert outcomes.count("rejected") == 2

    total_allocated = db_session.scalar(
        select(func.coalesce(func.sum(Allocation.quantity), 0)).where(Allocation.resource_id == kit.id)
    )
    assert total_allocated == 4
    assert _fresh(db_session, kit.id).available_capacity == 1


def test_venue_quantity_is_forced_to_one(db_session, organizer, make_event):
    event, _ = make_event()
    hall = inventory_service.create_resource(db_session, "Hall", "auditorium", 300)

    allocation = allocation_service.allocate(db_session, organizer, event.id, hall.id, 25)
    assert allocation.quantity == 1


def test_total_cannot_drop_below_allocated(db_session, organizer, make_event):
    event, _ = make_event()
    kit = inventory_service.create_resource(db_session, "Tables", "equipment", 5)
    allocation_service.allocate(db_session, organizer, event.id, kit.id, 3)

    with pytest.raises(ConflictError) as exc:
        inventory_service.update_resource(db_session, kit.id, {"total_capacity": 2})
    assert exc.value.code == "RESOURCE_IN_USE"
    db_session.rollback()

    grown = inventory_service.update_resource(db_session, kit.id, {"total_capacity": 8})
    assert grown.total_capacity == 8
    assert grown.available_capacity == 5
    assert grown.status == ResourceStatus.AVAILABLE


def test_kind_is_fixed_while_allocated(db_session, organizer, make_event):
    event, _ = make_event()
    mics = inventory_service.create_resource(db_session, "Mics", "equipment", 5)
    allocation_service.allocate(db_session, organizer, event.id, mics.id, 3)

    with pytest.raises(ConflictError) as exc:
        inventory_service.update_resource(db_session, mics.id, {"type": "hall"})
    assert exc.value.code == "RESOURCE_IN_USE"
    assert _fresh(db_session, mics.id).type == "equipment"

    retagged = inventory_service.update_resource(db_session, mics.id, {"type": "service"})
    assert retagged.type == "service"

    allocation_service.release_all(db_session, event.id)
    db_session.commit()
    restored = _fresh(db_session, mics.id)
    assert restored.available_capacity == 5
    assert restored.status == ResourceStatus.AVAILABLE

    hall = inventory_service.update_resource(db_session, mics.id, {"type": "hall"})
    assert inventory_service.resource_kind(hall.type) == ResourceKind.VENUE


def test_unknown_resource_is_not_found(db_session, organizer, make_event):
    import uuid

    event, _ = make_event()
    with pytest.raises(NotFoundError):
        allocation_service.allocate(db_session, organizer, event.id, uuid.uuid4(), 1)
