from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ticketing.api.v1.schemas.events import SchemaBase


class ScanIn(SchemaBase):
    payload: str = Field(min_length=1, max_length=4096)
    event_id: UUID | None = None


class CheckInOut(SchemaBase):
    registration_id: UUID
    event_id: UUID
    participant_id: UUID
    participant_name: str | None = None
    participant_email: str | None = None
    ticket_type_id: UUID
    resource_id: UUID | None = None
    checked_in_at: datetime


class CheckInRecordOut(SchemaBase):
    id: UUID
    registration_id: UUID
    participant_id: UUID
    event_id: UUID
    resource_id: UUID | None = None
    scanned_by: UUID | None = None
    status: str
    checked_in_at: datetime
