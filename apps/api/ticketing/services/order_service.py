"""Paid ticket orders and their link to registrations.

A completed order always points at exactly one active registration, and the
token handed out for it never changes once issued.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.change_feed import publish_change
from ticketing.core.config import settings
from ticketing.core.metrics import PAYMENTS
from ticketing.models import Event, Order, Registration, User
from ticketing.models.event import TicketKind
from ticketing.models.order import PaymentStatus
from ticketing.models.registration import RegistrationStatus
from ticketing.payments import gateway as payment_gateway
from ticketing.services import capacity, tickets
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    CapacityExceededError,
    ConflictError,
    DuplicateRegistrationError,
    NotFoundError,
    PaymentVerificationFailedError,
    PermissionDeniedError,
    ValidationError,
)
from ticketing.services.registration_service import active_registration, get_ticket_type

if TYPE_CHECKING:
    from ticketing.payments.gateway import PaymentGateway

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentProof:
    gateway_order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True)
class ConfirmedOrder:
    order: Order
    registration_id: Any
    qr_token: str
    already_confirmed: bool


def _validate_amount(kind: TicketKind, price: Decimal, amount: Decimal) -> None:
    if kind == TicketKind.FREE:
        raise ValidationError(ErrorCode.NOT_A_PAID_TICKET.value, "free tickets do not take payment")
    if kind == TicketKind.PAID and amount != price:
        raise ValidationError(ErrorCode.INVALID_AMOUNT.value, f"amount must equal {price}")
    if kind == TicketKind.DONATION and (amount <= 0 or amount < price):
        raise ValidationError(ErrorCode.INVALID_AMOUNT.value, f"donation must be at least {price}")


def begin_paid_order(
    db: Session,
    user: User,
    event_id: Any,
    ticket_type_id: Any,
    amount: Decimal,
    gateway: PaymentGateway,
) -> Order:
    """Create a pending order and its gateway counterpart."""
    event = db.get(Event, event_id, populate_existing=True)
    if not event:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    ticket_type = get_ticket_type(db, event.id, ticket_type_id)

    amount = Decimal(amount)
    _validate_amount(ticket_type.kind, Decimal(ticket_type.price), amount)

    if active_registration(db, event.id, user.id, ticket_type.id):
        raise DuplicateRegistrationError()

    limit = capacity.effective_capacity(db, event)
    if limit is not None and not event.override_capacity and event.confirmed_count >= limit:
        raise CapacityExceededError("event is full", available=0)
    if ticket_type.capacity is not None and ticket_type.sold_count >= ticket_type.capacity:
        raise CapacityExceededError(
            f"ticket type {ticket_type.name!r} is sold out",
            code=ErrorCode.TICKET_SOLD_OUT.value,
            available=0,
        )

    gateway_order = gateway.create_order(amount, settings.payment_currency, payment_gateway.make_receipt())

    order = Order(
        user_id=user.id,
        event_id=event.id,
        ticket_type_id=ticket_type.id,
        amount=amount,
        currency=gateway_order.currency,
        payment_status=PaymentStatus.PENDING,
        gateway_order_id=gateway_order.id,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    logger.info(
        "order_created",
        order_id=str(order.id),
        gateway_order_id=gateway_order.id,
        event_id=str(event.id),
        amount=str(amount),
    )
    publish_change("order", "created", order.id, event_id=event.id)
    return order


def _lock_order(db: Session, order_id: Any) -> Order | None:
    return db.scalar(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _owning_order_id(db: Session, registration_id: Any) -> Any:
    return db.scalar(select(Order.id).where(Order.registration_id == registration_id))


def _record_duplicate_payment(db: Session, order_id: Any, proof: PaymentProof) -> ConflictError:
    """Keep a verified payment for a ticket another order already holds, flagged for refund."""
    db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
        .values(
            payment_status=PaymentStatus.REFUNDED,
            gateway_payment_id=proof.payment_id,
            gateway_signature=proof.signature,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    PAYMENTS.labels(outcome="duplicate").inc()
    # TODO: issue the refund through the gateway once PaymentGateway exposes refunds.
    logger.warning("payment_refund_required", order_id=str(order_id), payment_id=proof.payment_id)
    return ConflictError(
        ErrorCode.ALREADY_PURCHASED.value,
        "ticket already purchased with another order; this payment is marked for refund",
    )


def _link_registration(db: Session, order: Order, existing: Registration | None) -> Registration:
    """Reuse the participant's active registration or insert a confirmed one."""
    if existing is not None:
        return existing

    registration = Registration(
        event_id=order.event_id,
        user_id=order.user_id,
        ticket_type_id=order.ticket_type_id,
        status=RegistrationStatus.CONFIRMED,
        source="paid",
    )
    db.add(registration)
    db.flush()
    capacity.force_event_slot(db, order.event_id)
    capacity.force_ticket(db, order.ticket_type_id)
    return registration


def _completed_result(db: Session, order_id: Any) -> ConfirmedOrder:
    order = db.get(Order, order_id, populate_existing=True)
    if (
        not order
        or order.payment_status != PaymentStatus.COMPLETED
        or not order.registration_id
        or not order.qr_token
    ):
        raise ConflictError(ErrorCode.ORDER_NOT_PAYABLE.value, "order could not be completed")
    return ConfirmedOrder(order, order.registration_id, order.qr_token, already_confirmed=True)


def confirm_payment(
    db: Session,
    user: User,
    order_id: Any,
    proof: PaymentProof,
    gateway: PaymentGateway,
) -> ConfirmedOrder:
    """Turn a verified payment into exactly one confirmed registration.

    Repeated and concurrent confirmations for the same order all return the
    same registration and token.
    """
    try:
        order = _lock_order(db, order_id)
        if not order:
            raise NotFoundError(ErrorCode.ORDER_NOT_FOUND.value, "order not found")
        if order.user_id != user.id:
            raise PermissionDeniedError(ErrorCode.NOT_OWNER.value, "not your order")

        if order.payment_status == PaymentStatus.COMPLETED and order.registration_id:
            db.rollback()
            PAYMENTS.labels(outcome="replayed").inc()
            return _completed_result(db, order_id)
        if order.payment_status != PaymentStatus.PENDING:
            raise ConflictError(
                ErrorCode.ORDER_NOT_PAYABLE.value, f"order is {order.payment_status.value}"
            )

        verified = (
            proof.gateway_order_id == order.gateway_order_id
            and gateway.verify_signature(proof.gateway_order_id, proof.payment_id, proof.signature)
        )
        if not verified:
            db.execute(
                update(Order)
                .where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING)
                .values(payment_status=PaymentStatus.FAILED, gateway_payment_id=proof.payment_id)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            PAYMENTS.labels(outcome="verification_failed").inc()
            logger.warning("payment_verification_failed", order_id=str(order.id))
            raise PaymentVerificationFailedError()

        held = active_registration(db, order.event_id, order.user_id, order.ticket_type_id)
        if held is not None and _owning_order_id(db, held.id) not in (None, order.id):
            raise _record_duplicate_payment(db, order.id, proof)

        registration = _link_registration(db, order, held)
        issued_at = datetime.now(timezone.utc)
        qr_token = tickets.mint_order_token(order, user.id, issued_at)

        completed = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING)
            .values(
                payment_status=PaymentStatus.COMPLETED,
                registration_id=registration.id,
                gateway_payment_id=proof.payment_id,
                gateway_signature=proof.signature,
                qr_token=qr_token,
                token_issued_at=issued_at,
            )
            .execution_options(synchronize_session=False)
        )
        if completed.rowcount != 1:
            db.rollback()
            PAYMENTS.labels(outcome="replayed").inc()
            return _completed_result(db, order_id)

        db.commit()
    except IntegrityError:
        db.rollback()
        current = db.get(Order, order_id, populate_existing=True)
        if current is not None and current.payment_status == PaymentStatus.COMPLETED:
            # A concurrent confirmation of this order got there first.
            PAYMENTS.labels(outcome="replayed").inc()
            return _completed_result(db, order_id)
        # Another order for the same ticket claimed the registration first.
        raise _record_duplicate_payment(db, order_id, proof) from None
    except PaymentVerificationFailedError:
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    PAYMENTS.labels(outcome="completed").inc()
    logger.info(
        "payment_confirmed",
        order_id=str(order.id),
        registration_id=str(registration.id),
        event_id=str(order.event_id),
    )
    publish_change(
        "order", "completed", order.id, event_id=order.event_id, registration_id=registration.id
    )
    return ConfirmedOrder(order, registration.id, qr_token, already_confirmed=False)


def get_order(db: Session, user: User, order_id: Any) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError(ErrorCode.ORDER_NOT_FOUND.value, "order not found")
    if order.user_id != user.id:
        raise PermissionDeniedError(ErrorCode.NOT_OWNER.value, "not your order")
    return order


def list_orders_for_user(db: Session, user: User) -> list[Order]:
    return list(
        db.scalars(
            select(Order).where(Order.user_id == user.id).order_by(Order.created_at.desc())
        ).all()
    )
