from fastapi import APIRouter

from ticketing.api.v1.schemas import CheckInOut, ScanIn
from ticketing.auth.deps import DBSession, Organizer
from ticketing.services import checkin_service

router = APIRouter(prefix="/checkins", tags=["checkins"])


@router.post("/scan", response_model=CheckInOut)
def scan(payload: ScanIn, user: Organizer, db: DBSession):
    return checkin_service.scan(db, payload.payload, scanned_by=user, event_id=payload.event_id)
