from ticketing.payments.gateway import (
    GatewayOrder,
    PaymentGateway,
    RazorpayGateway,
    get_payment_gateway,
)

__all__ = ["GatewayOrder", "PaymentGateway", "RazorpayGateway", "get_payment_gateway"]
