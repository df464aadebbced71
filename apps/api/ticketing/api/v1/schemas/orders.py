from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field

from ticketing.api.v1.schemas.events import SchemaBase
from ticketing.models.order import PaymentStatus


class OrderCreate(SchemaBase):
    event_id: UUID
    ticket_type_id: UUID
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class OrderOut(SchemaBase):
    id: UUID
    user_id: UUID
    event_id: UUID
    ticket_type_id: UUID
    registration_id: UUID | None = None
    amount: Decimal
    currency: str
    payment_status: PaymentStatus
    gateway_order_id: str | None = None
    created_at: datetime


class OrderCreatedOut(OrderOut):
    # What the checkout widget needs to open.
    key_id: str
    amount_minor: int


class PaymentConfirmIn(SchemaBase):
    gateway_order_id: str = Field(min_length=1)
    payment_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class OrderConfirmedOut(SchemaBase):
    order_id: UUID
    registration_id: UUID
    qr_token: str
    already_confirmed: bool
