from fastapi import APIRouter
from pydantic import BaseModel

from ticketing.api.v1.schemas import OrderOut, RegistrationCreatedOut
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.services import order_service, registration_service

router = APIRouter(prefix="/me", tags=["me"])


class MeOut(BaseModel):
    user_id: str
    email: str | None
    name: str | None
    role: str


@router.get("", response_model=MeOut)
def me(user: CurrentUser):
    return MeOut(user_id=str(user.id), email=user.email, name=user.display_name, role=user.role.value)


@router.get("/registrations", response_model=list[RegistrationCreatedOut])
def my_registrations(user: CurrentUser, db: DBSession):
    return registration_service.list_for_user(db, user)


@router.get("/orders", response_model=list[OrderOut])
def my_orders(user: CurrentUser, db: DBSession):
    return order_service.list_orders_for_user(db, user)
