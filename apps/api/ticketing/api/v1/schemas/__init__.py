from ticketing.api.v1.schemas.checkins import CheckInOut, CheckInRecordOut, ScanIn
from ticketing.api.v1.schemas.events import (
    AllocationIn,
    AllocationOut,
    EventCreate,
    EventListOut,
    EventOut,
    EventStatsOut,
    EventUpdate,
    TicketTypeCreate,
    TicketTypeOut,
)
from ticketing.api.v1.schemas.orders import (
    OrderConfirmedOut,
    OrderCreate,
    OrderCreatedOut,
    OrderOut,
    PaymentConfirmIn,
)
from ticketing.api.v1.schemas.registrations import (
    PromotionOut,
    RegistrationCreate,
    RegistrationCreatedOut,
    RegistrationOut,
    WaitlistEntryOut,
)
from ticketing.api.v1.schemas.resources import ResourceCreate, ResourceOut, ResourceUpdate

__all__ = [
    "AllocationIn",
    "AllocationOut",
    "CheckInOut",
    "CheckInRecordOut",
    "EventCreate",
    "EventListOut",
    "EventOut",
    "EventStatsOut",
    "EventUpdate",
    "OrderConfirmedOut",
    "OrderCreate",
    "OrderCreatedOut",
    "OrderOut",
    "PaymentConfirmIn",
    "PromotionOut",
    "RegistrationCreate",
    "RegistrationCreatedOut",
    "RegistrationOut",
    "ResourceCreate",
    "ResourceOut",
    "ResourceUpdate",
    "ScanIn",
    "TicketTypeCreate",
    "TicketTypeOut",
    "WaitlistEntryOut",
]
