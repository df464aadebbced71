"""QR token payloads.

Tokens are compact JSON strings. Paid tickets carry ``order_id``; free
tickets carry ``registration_id``. Rendering to an image and decoding from
one happen outside this module.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from ticketing.models import Order, Registration


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def mint_order_token(order: Order, user_id: Any, issued_at: datetime) -> str:
    return _dump(
        {
            "order_id": str(order.id),
            "event_id": str(order.event_id),
            "user_id": str(user_id),
            "ticket_type_id": str(order.ticket_type_id),
            "timestamp": issued_at.isoformat(),
        }
    )


def mint_registration_token(registration: Registration) -> str:
    return _dump(
        {
            "registration_id": str(registration.id),
            "event_id": str(registration.event_id),
            "user_id": str(registration.user_id),
            "ticket_type_id": str(registration.ticket_type_id),
            "timestamp": registration.created_at.isoformat(),
        }
    )


def parse_payload(raw: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_identifier(raw: str) -> str:
    """The lookup key carried by a scanned payload, or the raw text itself."""
    payload = parse_payload(raw)
    if payload:
        for key in ("registration_id", "order_id", "id"):
            value = payload.get(key)
            if value:
                return str(value).strip()
    return raw.strip()
