"""Domain enumerations and state-transition rules."""

import enum


class Role(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    CUSTOMER = "customer"


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


class VehicleCategory(str, enum.Enum):
    CAR = "car"
    VAN = "van"
    BUS = "bus"
    TRUCK = "truck"


class DriveType(str, enum.Enum):
    SELF = "self"
    DRIVER = "driver"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SharedTripStatus(str, enum.Enum):
    OPEN = "open"
    FULL = "full"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActorRole(str, enum.Enum):
    """How a user relates to a particular booking or trip."""

    ADMIN = "admin"
    APPROVER = "approver"
    DRIVER = "driver"


class NotificationEvent(str, enum.Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_STATUS_CHANGED = "booking_status_changed"
    TRIP_STARTED = "trip_started"
    TRIP_ENDED = "trip_ended"


_APPROVER_OR_ADMIN = frozenset({ActorRole.APPROVER, ActorRole.ADMIN})
_OPERATOR = frozenset({ActorRole.DRIVER, ActorRole.APPROVER, ActorRole.ADMIN})

# State machine: (current, next) -> roles allowed to perform the move.
# Any pair missing from the table is an illegal transition.
BOOKING_TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], frozenset[ActorRole]] = {
    (BookingStatus.PENDING, BookingStatus.PENDING): _APPROVER_OR_ADMIN,
    (BookingStatus.PENDING, BookingStatus.APPROVED): _APPROVER_OR_ADMIN,
    (BookingStatus.PENDING, BookingStatus.REJECTED): _APPROVER_OR_ADMIN,
    (BookingStatus.PENDING, BookingStatus.CANCELLED): _APPROVER_OR_ADMIN,
    (BookingStatus.APPROVED, BookingStatus.REJECTED): _APPROVER_OR_ADMIN,
    (BookingStatus.APPROVED, BookingStatus.CANCELLED): _APPROVER_OR_ADMIN,
    (BookingStatus.APPROVED, BookingStatus.IN_PROGRESS): _OPERATOR,
    # legacy: trips ended without ever being started
    (BookingStatus.APPROVED, BookingStatus.COMPLETED): _OPERATOR,
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED): _OPERATOR,
    (BookingStatus.CANCELLED, BookingStatus.PENDING): _APPROVER_OR_ADMIN,
    (BookingStatus.CANCELLED, BookingStatus.APPROVED): _APPROVER_OR_ADMIN,
}

# Statuses during which a standalone booking holds its vehicle.
ACTIVE_BOOKING_STATUSES = frozenset({BookingStatus.APPROVED, BookingStatus.IN_PROGRESS})

SHARED_TRIP_TRANSITIONS: dict[SharedTripStatus, set[SharedTripStatus]] = {
    SharedTripStatus.OPEN: {SharedTripStatus.IN_PROGRESS, SharedTripStatus.CANCELLED},
    SharedTripStatus.FULL: {SharedTripStatus.IN_PROGRESS, SharedTripStatus.CANCELLED},
    SharedTripStatus.IN_PROGRESS: {SharedTripStatus.COMPLETED},
    SharedTripStatus.COMPLETED: set(),
    SharedTripStatus.CANCELLED: set(),
}


class Permission(str, enum.Enum):
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_VEHICLES = "view_vehicles"
    VIEW_BOOKINGS = "view_bookings"
    VIEW_MAINTENANCE = "view_maintenance"
    VIEW_FUEL = "view_fuel"
    MANAGE_USERS = "manage_users"


DEFAULT_PERMISSIONS = [
    Permission.VIEW_DASHBOARD.value,
    Permission.VIEW_VEHICLES.value,
    Permission.VIEW_BOOKINGS.value,
]
