from __future__ import annotations

import uuid
from dataclasses import dataclass

import jwt
from jwt import PyJWTError

from ticketing.core.config import settings


@dataclass(frozen=True)
class Identity:
    """Verified claims of a bearer token issued by the identity provider."""

    user_id: uuid.UUID
    role: str | None
    email: str | None
    name: str | None


def verify_access_token(token: str) -> Identity:
    """Raises ValueError for anything that is not a valid, unexpired token."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            options={"require": ["sub", "exp"]},
        )
        subject = uuid.UUID(str(claims["sub"]))
    except (PyJWTError, ValueError) as exc:
        raise ValueError("invalid access token") from exc

    return Identity(
        user_id=subject,
        role=claims.get("role"),
        email=claims.get("email"),
        name=claims.get("name"),
    )
