import enum
import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column, utcnow


class ResourceStatus(str, enum.Enum):
    AVAILABLE = "available"
    ALLOCATED = "allocated"


class Resource(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "resources"
    __table_args__ = (
        sa.CheckConstraint("total_capacity >= 0", name="ck_resources_total_capacity"),
        sa.CheckConstraint(
            "available_capacity >= 0 AND available_capacity <= total_capacity",
            name="ck_resources_available_capacity",
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Free-text tag ("hall", "room", "equipment", ...); venue vs equipment is derived from it.
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="hall")
    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    total_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ResourceStatus] = mapped_column(
        enum_column(ResourceStatus),
        nullable=False,
        default=ResourceStatus.AVAILABLE,
        index=True,
    )
    # Plain back-reference (no FK) to keep events <-> resources acyclic.
    allocated_to: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)


class Allocation(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "resource_allocations"
    __table_args__ = (
        sa.CheckConstraint("quantity >= 1", name="ck_resource_allocations_quantity"),
        sa.Index("ix_resource_allocations_event_id", "event_id"),
        sa.Index("ix_resource_allocations_resource_id", "resource_id"),
    )

    resource_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("resources.id", ondelete="SET NULL"), nullable=True
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    organizer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    allocated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
