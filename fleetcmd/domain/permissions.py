"""
Capability checks and transition authorization.

Role and flag checks live here rather than in each endpoint so the rule
set stays declarative and can be tested without HTTP plumbing.  Functions
accept anything shaped like a user / booking (ORM rows or entities).
"""

from __future__ import annotations

import enum
from typing import Any, Iterable, Union

from .enums import (
    BOOKING_TRANSITIONS,
    ActorRole,
    BookingStatus,
    Permission,
    Role,
)
from .errors import InvalidStateTransition, PermissionDenied


class Capability(str, enum.Enum):
    ADMIN = "admin"
    APPROVER = "approver"
    DRIVER = "driver"


def is_admin(user: Any) -> bool:
    return Role(user.role) == Role.ADMIN


def has_capability(user: Any, capability: Union[Capability, Permission]) -> bool:
    """Admins hold every capability and permission implicitly."""
    if user is None:
        return False
    if is_admin(user):
        return True
    if capability == Capability.APPROVER:
        return bool(user.is_approver)
    if capability == Capability.DRIVER:
        return bool(user.is_driver)
    if isinstance(capability, Permission):
        return capability.value in (user.permissions or [])
    return False


def require_capability(
    user: Any, *capabilities: Union[Capability, Permission], message: str
) -> None:
    """Raise unless *user* holds at least one of *capabilities*."""
    if not any(has_capability(user, c) for c in capabilities):
        raise PermissionDenied(message)


def booking_actor_roles(user: Any, booking: Any) -> set[ActorRole]:
    """Roles *user* plays on *booking*: admin, designated approver, assigned driver."""
    roles: set[ActorRole] = set()
    if is_admin(user):
        roles.add(ActorRole.ADMIN)
    if booking.approver_id is not None and booking.approver_id == user.id:
        roles.add(ActorRole.APPROVER)
    if booking.driver_id is not None and booking.driver_id == user.id:
        roles.add(ActorRole.DRIVER)
    return roles


def trip_actor_roles(user: Any, driver_ids: Iterable[int]) -> set[ActorRole]:
    """Roles *user* plays on a shared trip whose bookings have *driver_ids*."""
    roles: set[ActorRole] = set()
    if is_admin(user):
        roles.add(ActorRole.ADMIN)
    if user.is_approver:
        roles.add(ActorRole.APPROVER)
    if user.id in set(driver_ids):
        roles.add(ActorRole.DRIVER)
    return roles


def allowed_roles(current: BookingStatus, target: BookingStatus) -> frozenset[ActorRole]:
    """Return the roles permitted to move a booking from *current* to *target*."""
    try:
        return BOOKING_TRANSITIONS[(current, target)]
    except KeyError:
        sources = sorted(
            src.value for (src, dst) in BOOKING_TRANSITIONS if dst == target
        )
        required = " or ".join(sources) if sources else "no status"
        raise InvalidStateTransition(
            f"Cannot change booking from {current.value} to {target.value}; "
            f"booking must be {required}"
        ) from None


def authorize_booking_transition(
    user: Any, booking: Any, target: BookingStatus
) -> None:
    """Validate the edge, then check the caller plays one of its roles."""
    current = BookingStatus(booking.status)
    permitted = allowed_roles(current, target)
    if not booking_actor_roles(user, booking) & permitted:
        who = "/".join(sorted(r.value for r in permitted))
        raise PermissionDenied(
            f"Only the {who} of this booking may change it from "
            f"{current.value} to {target.value}"
        )
