"""Payment gateway client.

Orders are created with the gateway before checkout; the checkout widget then
returns ``(gateway_order_id, payment_id, signature)`` which we verify locally
with the shared secret.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import httpx
import structlog

from ticketing.core.config import settings
from ticketing.services.exceptions import PaymentGatewayError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount_minor: int
    currency: str


class PaymentGateway(Protocol):
    key_id: str

    def create_order(self, amount: Decimal, currency: str, receipt: str) -> GatewayOrder: ...

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool: ...


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_signature(secret: str, gateway_order_id: str, payment_id: str) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.key_id = key_id
        self._key_secret = key_secret
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_order(self, amount: Decimal, currency: str, receipt: str) -> GatewayOrder:
        amount_minor = to_minor_units(amount)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(
                    f"{self._api_base}/orders",
                    auth=(self.key_id, self._key_secret),
                    json={"amount": amount_minor, "currency": currency, "receipt": receipt},
                )
        except httpx.HTTPError as exc:
            logger.warning("payment_gateway_unreachable", error=str(exc))
            raise PaymentGatewayError() from exc

        if resp.status_code >= 400:
            logger.warning(
                "payment_gateway_rejected", status_code=resp.status_code, body=resp.text[:500]
            )
            raise PaymentGatewayError(f"gateway returned {resp.status_code}")

        data = resp.json()
        return GatewayOrder(
            id=data["id"],
            amount_minor=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
        )

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret or not signature:
            return False
        expected = compute_signature(self._key_secret, gateway_order_id, payment_id)
        return hmac.compare_digest(expected, signature)


def make_receipt() -> str:
    return f"order_{int(time.time() * 1000)}"


def get_payment_gateway() -> PaymentGateway:
    return RazorpayGateway(
        key_id=settings.payment_key_id,
        key_secret=settings.payment_key_secret,
        api_base=settings.payment_api_base,
        timeout=settings.payment_timeout_seconds,
    )
