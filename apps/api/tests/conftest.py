from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
from fastapi.testclient import TestClient

# Settings are read at import time; configure before importing the app.
_db_dir = tempfile.mkdtemp(prefix="ticketing-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_db_dir, 'test.db')}")
os.environ.setdefault("AUTH_MODE", "jwt")
os.environ.setdefault("JWT_SECRET", "test_jwt_secret_32_chars_minimum")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CHANGE_FEED_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("PAYMENT_KEY_ID", "rzp_test_key")
os.environ.setdefault("PAYMENT_KEY_SECRET", "rzp_test_secret")

from ticketing.api.v1.schemas import EventCreate, TicketTypeCreate  # noqa: E402
from ticketing.core.config import settings  # noqa: E402
from ticketing.db import SessionLocal, create_tables  # noqa: E402
from ticketing.main import app  # noqa: E402
from ticketing.models import Base, User  # noqa: E402
from ticketing.models.event import TicketKind  # noqa: E402
from ticketing.models.user import UserRole  # noqa: E402
from ticketing.payments.gateway import GatewayOrder, compute_signature, get_payment_gateway  # noqa: E402
from ticketing.services import events_service  # noqa: E402

create_tables()


def mint_token(user_id, role: str, email: str | None = None, name: str | None = None) -> str:
    """Sign a bearer token the way the identity provider does."""
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": issued,
        "exp": issued + timedelta(minutes=15),
    }
    claims.update({k: v for k, v in (("email", email), ("name", name)) if v})
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


class FakeGateway:
    key_id = "rzp_test_key"
    secret = "rzp_test_secret"

    def __init__(self) -> None:
        self.created: list[GatewayOrder] = []

    def create_order(self, amount, currency, receipt):
        order = GatewayOrder(
            id=f"order_gw_{len(self.created) + 1}",
            amount_minor=int(Decimal(amount) * 100),
            currency=currency,
        )
        self.created.append(order)
        return order

    def verify_signature(self, gateway_order_id, payment_id, signature):
        return signature == compute_signature(self.secret, gateway_order_id, payment_id)

    def sign(self, gateway_order_id: str, payment_id: str) -> str:
        return compute_signature(self.secret, gateway_order_id, payment_id)


@pytest.fixture
def gateway() -> FakeGateway:
    fake = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db():
    # Ensure a clean slate for each test
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture(autouse=True)
def no_worker(monkeypatch):
    enqueued: list[str] = []
    monkeypatch.setattr(
        "ticketing.worker.tasks.enqueue_promotion", lambda event_id: enqueued.append(str(event_id))
    )
    return enqueued


@pytest.fixture
def make_user(db_session):
    def _make(email: str, role: UserRole = UserRole.PARTICIPANT, name: str | None = None) -> User:
        user = User(email=email, display_name=name or email.split("@")[0], role=role)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def issue_token():
    return mint_token


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        token = mint_token(
            user.id, user.role.value, email=user.email, name=user.display_name
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def organizer(make_user) -> User:
    return make_user("org@example.com", UserRole.ORGANIZER, name="Olive Organizer")


@pytest.fixture
def make_event(db_session, organizer):
    def _make(
        capacity: int | None = None,
        kind: TicketKind = TicketKind.FREE,
        price: str = "0",
        ticket_capacity: int | None = None,
        owner: User | None = None,
        **fields,
    ):
        starts_at = datetime.now(timezone.utc) + timedelta(days=7)
        payload = EventCreate(
            title=fields.pop("title", "Launch Party"),
            starts_at=starts_at,
            ends_at=starts_at + timedelta(hours=3),
            capacity=capacity,
            ticket_types=[
                TicketTypeCreate(
                    name="General", kind=kind, price=Decimal(price), capacity=ticket_capacity
                )
            ],
            **fields,
        )
        event = events_service.create_event(db_session, owner or organizer, payload)
        return event, event.ticket_types[0]

    return _make
