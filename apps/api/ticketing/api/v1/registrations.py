from uuid import UUID

from fastapi import APIRouter
from sqlalchemy import select

from ticketing.api.qr import qr_png_response
from ticketing.api.v1.schemas import CheckInOut, RegistrationOut
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.models import Order
from ticketing.services import checkin_service, registration_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import NotFoundError

router = APIRouter(prefix="/registrations", tags=["registrations"])


@router.get("/{registration_id}", response_model=RegistrationOut)
def get_registration(registration_id: UUID, user: CurrentUser, db: DBSession):
    return registration_service.get_registration(db, user, registration_id)


@router.post("/{registration_id}/cancel", response_model=RegistrationOut)
def cancel_registration(registration_id: UUID, user: CurrentUser, db: DBSession):
    return registration_service.cancel(db, user, registration_id)


@router.post("/{registration_id}/check-in", response_model=CheckInOut)
def check_in_registration(registration_id: UUID, user: CurrentUser, db: DBSession):
    return checkin_service.check_in_registration(db, user, registration_id)


@router.get("/{registration_id}/qr.png")
def registration_qr(registration_id: UUID, user: CurrentUser, db: DBSession):
    registration = registration_service.get_registration(db, user, registration_id)
    token = registration.qr_token
    if not token:
        # Paid tickets carry the order's token.
        token = db.scalar(select(Order.qr_token).where(Order.registration_id == registration.id))
    if not token:
        raise NotFoundError(ErrorCode.REGISTRATION_NOT_FOUND.value, "no ticket issued yet")
    return qr_png_response(token)
