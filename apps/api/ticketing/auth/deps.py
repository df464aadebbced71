from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.auth.jwt import verify_access_token
from ticketing.core.config import settings
from ticketing.db import get_db
from ticketing.models import User
from ticketing.models.user import UserRole

DBSession = Annotated[Session, Depends(get_db)]


def _unauthorized(detail: str = "unauthorized") -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_role(value: str | None) -> UserRole:
    try:
        return UserRole(value or UserRole.PARTICIPANT.value)
    except ValueError:
        raise _unauthorized("unknown role claim") from None


def _upsert_user(
    db: Session,
    user_id: uuid.UUID | None,
    email: str | None,
    name: str | None,
    role: UserRole | None,
) -> User:
    user = None
    if user_id is not None:
        user = db.get(User, user_id)
    if user is None and email:
        user = db.scalar(select(User).where(User.email == email))

    if user is None:
        user = User(email=email, display_name=name, role=role or UserRole.PARTICIPANT)
        if user_id is not None:
            user.id = user_id
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Another request for the same identity got there first.
            db.rollback()
            user = db.get(User, user_id) if user_id else db.scalar(select(User).where(User.email == email))
            if user is None:
                raise
        return user

    changed = False
    for attr, value in (("email", email), ("display_name", name), ("role", role)):
        if value is not None and getattr(user, attr) != value:
            setattr(user, attr, value)
            changed = True
    if changed:
        db.add(user)
        db.commit()
    return user


def get_current_user(request: Request, db: DBSession) -> User:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise _unauthorized("missing bearer token")

    token = auth.removeprefix("Bearer ").strip()

    # Local dev auth only
    if settings.auth_mode == "dev" and settings.env == "local":
        prefix = settings.dev_auth_prefix
        if not token.startswith(prefix):
            raise _unauthorized(f"invalid dev token (expected prefix {prefix})")

        # dev_<email> or dev_<email>:<role>
        email, _, role = token.removeprefix(prefix).strip().partition(":")
        if "@" not in email:
            raise _unauthorized("invalid email in token")
        return _upsert_user(db, None, email, None, _parse_role(role) if role else None)

    if settings.auth_mode == "jwt":
        try:
            identity = verify_access_token(token)
        except ValueError:
            raise _unauthorized("invalid access token") from None

        return _upsert_user(
            db, identity.user_id, identity.email, identity.name, _parse_role(identity.role)
        )

    raise _unauthorized("auth not configured")


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_role(*roles: UserRole) -> Callable[[User], User]:
    allowed = set(roles)

    def dependency(user: CurrentUser) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail={"code": "forbidden", "message": "insufficient role"})
        return user

    return dependency


Organizer = Annotated[User, Depends(require_role(UserRole.ORGANIZER, UserRole.ADMIN))]
