from ticketing.models.base import Base
from ticketing.models.checkin import CheckIn
from ticketing.models.event import Event, TicketType
from ticketing.models.order import Order
from ticketing.models.registration import Registration
from ticketing.models.resource import Allocation, Resource
from ticketing.models.user import User

__all__ = [
    "Base",
    "User",
    "Event",
    "TicketType",
    "Resource",
    "Allocation",
    "Registration",
    "Order",
    "CheckIn",
]
