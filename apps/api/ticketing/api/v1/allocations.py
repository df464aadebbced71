from uuid import UUID

from fastapi import APIRouter, Response

from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.services import allocation_service

router = APIRouter(prefix="/allocations", tags=["allocations"])


@router.delete("/{allocation_id}", status_code=204)
def delete_allocation(allocation_id: UUID, user: CurrentUser, db: DBSession):
    allocation_service.remove_allocation(db, user, allocation_id)
    return Response(status_code=204)
