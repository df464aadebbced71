from enum import Enum


class ErrorCode(str, Enum):
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    TICKET_TYPE_NOT_FOUND = "TICKET_TYPE_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    ALLOCATION_NOT_FOUND = "ALLOCATION_NOT_FOUND"
    REGISTRATION_NOT_FOUND = "REGISTRATION_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"

    NOT_ORGANIZER = "NOT_ORGANIZER"
    NOT_OWNER = "NOT_OWNER"

    INVALID_TIME_WINDOW = "INVALID_TIME_WINDOW"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PRICE = "INVALID_PRICE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_CAPACITY = "INVALID_CAPACITY"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    NOT_A_PAID_TICKET = "NOT_A_PAID_TICKET"

    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    TICKET_SOLD_OUT = "TICKET_SOLD_OUT"
    INSUFFICIENT_CAPACITY = "INSUFFICIENT_CAPACITY"
    RESOURCE_IN_USE = "RESOURCE_IN_USE"
    REGISTRATION_CHECKED_IN = "REGISTRATION_CHECKED_IN"

    INVALID_OR_UNREGISTERED_TOKEN = "INVALID_OR_UNREGISTERED_TOKEN"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"

    PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"
    ORDER_NOT_PAYABLE = "ORDER_NOT_PAYABLE"
    ALREADY_PURCHASED = "ALREADY_PURCHASED"
    PAYMENT_GATEWAY_ERROR = "PAYMENT_GATEWAY_ERROR"
