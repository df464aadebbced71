from __future__ import annotations

from ticketing.models import Event, User
from ticketing.models.user import UserRole
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import PermissionDeniedError


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def is_organizer(user: User) -> bool:
    return user.role in {UserRole.ORGANIZER, UserRole.ADMIN}


def require_organizer(user: User) -> None:
    if not is_organizer(user):
        raise PermissionDeniedError(
            ErrorCode.NOT_ORGANIZER.value, "only organizers or admins can do this"
        )


def can_manage(user: User, event: Event) -> bool:
    return is_admin(user) or (is_organizer(user) and event.organizer_id == user.id)


def require_manage_permission(user: User, event: Event) -> None:
    if not can_manage(user, event):
        raise PermissionDeniedError(ErrorCode.NOT_ORGANIZER.value, "not organizer for this event")
