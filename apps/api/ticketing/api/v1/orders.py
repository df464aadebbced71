from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from ticketing.api.qr import qr_png_response
from ticketing.api.v1.schemas import (
    OrderConfirmedOut,
    OrderCreate,
    OrderCreatedOut,
    OrderOut,
    PaymentConfirmIn,
)
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.payments.gateway import PaymentGateway, get_payment_gateway, to_minor_units
from ticketing.services import order_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import NotFoundError
from ticketing.services.order_service import PaymentProof

router = APIRouter(prefix="/orders", tags=["orders"])

Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]


@router.post("", response_model=OrderCreatedOut, status_code=201)
def create_order(payload: OrderCreate, user: CurrentUser, db: DBSession, gateway: Gateway):
    order = order_service.begin_paid_order(
        db, user, payload.event_id, payload.ticket_type_id, payload.amount, gateway
    )
    return OrderCreatedOut(
        **OrderOut.model_validate(order).model_dump(),
        key_id=gateway.key_id,
        amount_minor=to_minor_units(order.amount),
    )


@router.get("", response_model=list[OrderOut])
def list_orders(user: CurrentUser, db: DBSession):
    return order_service.list_orders_for_user(db, user)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: UUID, user: CurrentUser, db: DBSession):
    return order_service.get_order(db, user, order_id)


@router.post("/{order_id}/confirm", response_model=OrderConfirmedOut)
def confirm_order(
    order_id: UUID,
    payload: PaymentConfirmIn,
    user: CurrentUser,
    db: DBSession,
    gateway: Gateway,
):
    result = order_service.confirm_payment(
        db,
        user,
        order_id,
        PaymentProof(payload.gateway_order_id, payload.payment_id, payload.signature),
        gateway,
    )
    return OrderConfirmedOut(
        order_id=result.order.id,
        registration_id=result.registration_id,
        qr_token=result.qr_token,
        already_confirmed=result.already_confirmed,
    )


@router.get("/{order_id}/qr.png")
def order_qr(order_id: UUID, user: CurrentUser, db: DBSession):
    order = order_service.get_order(db, user, order_id)
    if not order.qr_token:
        raise NotFoundError(ErrorCode.ORDER_NOT_FOUND.value, "order has no ticket yet")
    return qr_png_response(order.qr_token)
