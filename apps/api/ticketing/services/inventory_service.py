"""Resource inventory: bookable venues and equipment.

``reserve`` and ``release`` are single conditional UPDATE statements so that
two organizers racing for the same stock can never drive capacity negative.
Neither commits; callers compose them with their own ledger writes.
"""

from __future__ import annotations

import enum
from typing import Any

import structlog
from sqlalchemy import Uuid, case, func, literal, null, select, update
from sqlalchemy.orm import Session

from ticketing.core.config import settings
from ticketing.models import Allocation, Resource
from ticketing.models.resource import ResourceStatus
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


class ResourceKind(str, enum.Enum):
    VENUE = "venue"
    EQUIPMENT = "equipment"


def resource_kind(type_tag: str | None) -> ResourceKind:
    tag = (type_tag or "").strip().lower()
    # Venue tags win when a tag appears in both lists.
    if tag in {t.lower() for t in settings.venue_types}:
        return ResourceKind.VENUE
    if tag in {t.lower() for t in settings.equipment_types}:
        return ResourceKind.EQUIPMENT
    return ResourceKind.VENUE


def is_venue(resource: Resource) -> bool:
    return resource_kind(resource.type) == ResourceKind.VENUE


def _get_or_404(db: Session, resource_id: Any) -> Resource:
    resource = db.get(Resource, resource_id)
    if not resource:
        raise NotFoundError(ErrorCode.RESOURCE_NOT_FOUND.value, "resource not found")
    return resource


def reserve(db: Session, resource_id: Any, quantity: int, event_id: Any) -> Resource:
    resource = _get_or_404(db, resource_id)

    if is_venue(resource):
        stmt = (
            update(Resource)
            .where(Resource.id == resource.id, Resource.status == ResourceStatus.AVAILABLE)
            .values(status=ResourceStatus.ALLOCATED, allocated_to=event_id)
        )
    else:
        if quantity < 1:
            raise ValidationError(ErrorCode.INVALID_QUANTITY.value, "quantity must be at least 1")
        remaining = Resource.available_capacity - quantity
        stmt = (
            update(Resource)
            .where(Resource.id == resource.id, Resource.available_capacity >= quantity)
            .values(
                available_capacity=remaining,
                status=case((remaining == 0, ResourceStatus.ALLOCATED.value), else_=ResourceStatus.AVAILABLE.value),
                allocated_to=case(
                    (remaining == 0, literal(event_id, Uuid)), else_=Resource.allocated_to
                ),
            )
        )

    result = db.execute(stmt.execution_options(synchronize_session=False))
    db.refresh(resource)
    if result.rowcount != 1:
        available = 0 if is_venue(resource) else resource.available_capacity
        raise CapacityExceededError(
            f"resource {resource.name!r} cannot supply {quantity}",
            available=available,
        )

    logger.info(
        "resource_reserved",
        resource_id=str(resource.id),
        event_id=str(event_id),
        quantity=quantity,
        available=resource.available_capacity,
    )
    return resource


def release(db: Session, resource_id: Any, quantity: int) -> bool:
    """Give capacity back. Returns False if the resource no longer exists."""
    resource = db.get(Resource, resource_id)
    if not resource:
        return False

    if is_venue(resource):
        values: dict[str, Any] = {"status": ResourceStatus.AVAILABLE, "allocated_to": None}
    else:
        restored = Resource.available_capacity + quantity
        clamped = case((restored > Resource.total_capacity, Resource.total_capacity), else_=restored)
        values = {
            "available_capacity": clamped,
            "status": case((clamped > 0, ResourceStatus.AVAILABLE.value), else_=ResourceStatus.ALLOCATED.value),
            "allocated_to": case((clamped <= 0, Resource.allocated_to), else_=null()),
        }

    db.execute(
        update(Resource)
        .where(Resource.id == resource.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(resource)
    logger.info(
        "resource_released",
        resource_id=str(resource.id),
        quantity=quantity,
        available=resource.available_capacity,
    )
    return True


def create_resource(
    db: Session,
    name: str,
    type_tag: str,
    total_capacity: int,
    location: str | None = None,
) -> Resource:
    if total_capacity < 0:
        raise ValidationError(ErrorCode.INVALID_CAPACITY.value, "capacity cannot be negative")

    resource = Resource(
        name=name,
        type=type_tag,
        location=location,
        total_capacity=total_capacity,
        available_capacity=total_capacity,
        status=ResourceStatus.AVAILABLE,
    )
    db.add(resource)
    db.commit()
    db.refresh(resource)
    return resource


def get_resource(db: Session, resource_id: Any) -> Resource:
    return _get_or_404(db, resource_id)


def list_resources(
    db: Session,
    status: ResourceStatus | None = None,
    kind: ResourceKind | None = None,
) -> list[Resource]:
    stmt = select(Resource).order_by(Resource.name)
    if status is not None:
        stmt = stmt.where(Resource.status == status)
    resources = list(db.scalars(stmt).all())
    if kind is not None:
        resources = [r for r in resources if resource_kind(r.type) == kind]
    return resources


def _allocated_quantity(db: Session, resource_id: Any) -> int:
    return int(
        db.scalar(
            select(func.coalesce(func.sum(Allocation.quantity), 0)).where(
                Allocation.resource_id == resource_id
            )
        )
        or 0
    )


def update_resource(db: Session, resource_id: Any, patch: dict[str, Any]) -> Resource:
    resource = db.scalar(select(Resource).where(Resource.id == resource_id).with_for_update())
    if not resource:
        raise NotFoundError(ErrorCode.RESOURCE_NOT_FOUND.value, "resource not found")

    new_total = patch.get("total_capacity")
    try:
        new_type = patch.get("type")
        if (
            new_type is not None
            and resource_kind(new_type) != resource_kind(resource.type)
            and _allocated_quantity(db, resource.id) > 0
        ):
            # Release restores capacity by kind, so the kind is fixed while allocated.
            raise ConflictError(
                ErrorCode.RESOURCE_IN_USE.value,
                "cannot switch between venue and equipment while allocated",
            )
        for key in ("name", "type", "location"):
            if key in patch and patch[key] is not None:
                setattr(resource, key, patch[key])

        if new_total is not None:
            if new_total < 0:
                raise ValidationError(ErrorCode.INVALID_CAPACITY.value, "capacity cannot be negative")
            if is_venue(resource):
                resource.total_capacity = new_total
                resource.available_capacity = new_total
            else:
                in_use = _allocated_quantity(db, resource.id)
                if new_total < in_use:
                    raise ConflictError(
                        ErrorCode.RESOURCE_IN_USE.value,
                        "capacity cannot drop below the quantity currently allocated",
                    )
                resource.total_capacity = new_total
                resource.available_capacity = new_total - in_use
                resource.status = (
                    ResourceStatus.AVAILABLE
                    if resource.available_capacity > 0
                    else ResourceStatus.ALLOCATED
                )

        db.add(resource)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(resource)
    return resource


def delete_resource(db: Session, resource_id: Any) -> None:
    resource = _get_or_404(db, resource_id)
    db.delete(resource)
    db.commit()
    logger.info("resource_deleted", resource_id=str(resource_id))
