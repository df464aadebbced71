from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ticketing.models.event import TicketKind


def _ensure_tzaware(value: datetime | None) -> datetime | None:
    if value is None:
        return value
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError("datetime must be timezone-aware")
    return value


class SchemaBase(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class TZAwareMixin(BaseModel):
    @field_validator("starts_at", "ends_at", mode="after", check_fields=False)
    @classmethod
    def _validate_tzaware(cls, value: datetime | None) -> datetime | None:
        return _ensure_tzaware(value)


class TicketTypeCreate(SchemaBase):
    name: str = Field(min_length=1, max_length=100)
    kind: TicketKind = TicketKind.FREE
    price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    capacity: int | None = Field(default=None, ge=0)


class TicketTypeOut(SchemaBase):
    id: UUID
    event_id: UUID
    name: str
    kind: TicketKind
    price: Decimal
    capacity: int | None = None
    sold_count: int


class AllocationIn(SchemaBase):
    resource_id: UUID
    quantity: int = Field(default=1, ge=1)
    notes: str | None = None


class AllocationOut(SchemaBase):
    id: UUID
    resource_id: UUID | None = None
    event_id: UUID
    organizer_id: UUID | None = None
    quantity: int
    notes: str | None = None
    allocated_at: datetime


class EventCreate(TZAwareMixin, SchemaBase):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    starts_at: datetime
    ends_at: datetime
    capacity: int | None = Field(default=None, ge=0)
    override_capacity: bool = False
    venue_id: UUID | None = None
    resources: list[AllocationIn] = Field(default_factory=list)
    ticket_types: list[TicketTypeCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_time_bounds(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class EventUpdate(TZAwareMixin, SchemaBase):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    capacity: int | None = Field(default=None, ge=0)
    override_capacity: bool | None = None
    # When present, the event's allocations are replaced by this set.
    resources: list[AllocationIn] | None = None

    @model_validator(mode="after")
    def _validate_time_bounds(self):
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class EventOut(SchemaBase):
    id: UUID
    title: str
    description: str | None = None
    starts_at: datetime
    ends_at: datetime
    capacity: int | None = None
    override_capacity: bool
    venue_id: UUID | None = None
    confirmed_count: int
    organizer_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    ticket_types: list[TicketTypeOut] = Field(default_factory=list)


class EventListOut(SchemaBase):
    items: list[EventOut]
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    total: int = Field(ge=0)


class EventStatsOut(SchemaBase):
    event_id: UUID
    capacity: int | None = None
    override_capacity: bool
    confirmed: int
    waitlisted: int
    cancelled: int
    checked_in: int
    remaining: int | None = None
