from uuid import UUID

from fastapi import APIRouter, Response

from ticketing.api.v1.schemas import ResourceCreate, ResourceOut, ResourceUpdate
from ticketing.auth.deps import CurrentUser, DBSession, Organizer
from ticketing.models import Resource
from ticketing.models.resource import ResourceStatus
from ticketing.services import inventory_service
from ticketing.services.inventory_service import ResourceKind

router = APIRouter(prefix="/resources", tags=["resources"])


def _out(resource: Resource) -> ResourceOut:
    return ResourceOut(
        id=resource.id,
        name=resource.name,
        type=resource.type,
        kind=inventory_service.resource_kind(resource.type),
        location=resource.location,
        total_capacity=resource.total_capacity,
        available_capacity=resource.available_capacity,
        status=resource.status,
        allocated_to=resource.allocated_to,
        created_at=resource.created_at,
    )


@router.post("", response_model=ResourceOut, status_code=201)
def create_resource(payload: ResourceCreate, user: Organizer, db: DBSession):
    resource = inventory_service.create_resource(
        db,
        name=payload.name,
        type_tag=payload.type,
        total_capacity=payload.total_capacity,
        location=payload.location,
    )
    return _out(resource)


@router.get("", response_model=list[ResourceOut])
def list_resources(
    user: CurrentUser,
    db: DBSession,
    status: ResourceStatus | None = None,
    kind: ResourceKind | None = None,
):
    return [_out(r) for r in inventory_service.list_resources(db, status=status, kind=kind)]


@router.get("/{resource_id}", response_model=ResourceOut)
def get_resource(resource_id: UUID, user: CurrentUser, db: DBSession):
    return _out(inventory_service.get_resource(db, resource_id))


@router.patch("/{resource_id}", response_model=ResourceOut)
def update_resource(resource_id: UUID, payload: ResourceUpdate, user: Organizer, db: DBSession):
    resource = inventory_service.update_resource(
        db, resource_id, payload.model_dump(exclude_unset=True)
    )
    return _out(resource)


@router.delete("/{resource_id}", status_code=204)
def delete_resource(resource_id: UUID, user: Organizer, db: DBSession):
    inventory_service.delete_resource(db, resource_id)
    return Response(status_code=204)
