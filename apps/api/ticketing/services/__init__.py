from ticketing.services.allocation_service import allocate, release_all
from ticketing.services.checkin_service import resolve_token, scan
from ticketing.services.events_service import create_event, delete_event, update_event
from ticketing.services.order_service import begin_paid_order, confirm_payment
from ticketing.services.registration_service import cancel, register
from ticketing.services.waitlist_service import promote_next

__all__ = [
    "allocate",
    "release_all",
    "create_event",
    "update_event",
    "delete_event",
    "register",
    "cancel",
    "promote_next",
    "begin_paid_order",
    "confirm_payment",
    "resolve_token",
    "scan",
]
