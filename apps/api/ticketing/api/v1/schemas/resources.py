from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ticketing.api.v1.schemas.events import SchemaBase
from ticketing.models.resource import ResourceStatus
from ticketing.services.inventory_service import ResourceKind


class ResourceCreate(SchemaBase):
    name: str = Field(min_length=1, max_length=200)
    type: str = Field(default="venue", min_length=1, max_length=50)
    location: str | None = None
    total_capacity: int = Field(default=0, ge=0)


class ResourceUpdate(SchemaBase):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    type: str | None = Field(default=None, min_length=1, max_length=50)
    location: str | None = None
    total_capacity: int | None = Field(default=None, ge=0)


class ResourceOut(SchemaBase):
    id: UUID
    name: str
    type: str
    kind: ResourceKind
    location: str | None = None
    total_capacity: int
    available_capacity: int
    status: ResourceStatus
    allocated_to: UUID | None = None
    created_at: datetime
