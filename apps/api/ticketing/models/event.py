import enum
import uuid
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketing.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column


class TicketKind(str, enum.Enum):
    FREE = "free"
    PAID = "paid"
    DONATION = "donation"


class Event(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "events"
    __table_args__ = (
        sa.CheckConstraint("ends_at > starts_at", name="ck_events_time_window"),
        sa.CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_events_capacity"),
        sa.CheckConstraint("confirmed_count >= 0", name="ck_events_confirmed_count"),
    )

    organizer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # NULL means unbounded; the venue capacity may still bind.
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    override_capacity: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    venue_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("resources.id", ondelete="SET NULL"), nullable=True
    )

    # Mirror of the number of confirmed registrations. Only ever changed by
    # conditional UPDATE statements in the registration services.
    confirmed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    ticket_types: Mapped[list["TicketType"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TicketType.created_at",
    )


class TicketType(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "ticket_types"
    __table_args__ = (
        sa.CheckConstraint("sold_count >= 0", name="ck_ticket_types_sold_count"),
        sa.CheckConstraint("price >= 0", name="ck_ticket_types_price"),
        sa.CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_ticket_types_capacity"),
    )

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[TicketKind] = mapped_column(
        enum_column(TicketKind), nullable=False, default=TicketKind.FREE
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sold_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    event: Mapped[Event] = relationship(back_populates="ticket_types")
