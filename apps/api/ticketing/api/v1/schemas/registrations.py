from __future__ import annotations

from datetime import datetime
from uuid import UUID

from ticketing.api.v1.schemas.events import SchemaBase
from ticketing.models.registration import RegistrationStatus


class RegistrationCreate(SchemaBase):
    ticket_type_id: UUID


class RegistrationOut(SchemaBase):
    id: UUID
    event_id: UUID
    user_id: UUID
    ticket_type_id: UUID
    status: RegistrationStatus
    source: str
    checked_in_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime


class RegistrationCreatedOut(RegistrationOut):
    qr_token: str | None = None


class WaitlistEntryOut(SchemaBase):
    position: int
    registration_id: UUID
    user_id: UUID
    ticket_type_id: UUID
    created_at: datetime


class PromotionOut(SchemaBase):
    promoted: bool
    registration: RegistrationOut | None = None
