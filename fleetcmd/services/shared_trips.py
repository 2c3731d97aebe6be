"""
Shared-Trip Allocator
=====================

A shared trip is a seat pool on one large vehicle for one time window.
Passengers claim seats by joining; each join becomes a pre-approved
booking linked to the trip.

Concurrency safety
------------------
The cached ``shared_trips.reserved_seats`` column is never trusted for the
capacity decision.  A join:

1. takes the per-trip **Redis distributed lock** (``shared_trip:<id>``),
2. re-reads the trip with **SELECT ... FOR UPDATE**,
3. recomputes the reserved total from the trip's non-cancelled bookings,
4. inserts the booking, refreshes the cache and **commits**,

all before the lock is released, so two racing joins on a near-full trip
see each other's seats.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fleetcmd.config import settings
from fleetcmd.domain.entities import SeatAssignment, SeatPool, seat_map
from fleetcmd.domain.enums import (
    SHARED_TRIP_TRANSITIONS,
    ActorRole,
    BookingStatus,
    DriveType,
    NotificationEvent,
    Permission,
    SharedTripStatus,
    VehicleStatus,
)
from fleetcmd.domain.errors import (
    CapacityExceeded,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    ResourceBusy,
    ValidationError,
)
from fleetcmd.domain.permissions import (
    Capability,
    require_capability,
    trip_actor_roles,
)
from fleetcmd.infrastructure.locks import DistributedLock, LockNotAcquired
from fleetcmd.infrastructure.models import BookingModel, SharedTripModel, UserModel
from fleetcmd.infrastructure.redis_client import get_redis
from fleetcmd.infrastructure.repositories import (
    BookingRepository,
    SharedTripRepository,
    UserRepository,
    VehicleRepository,
)
from fleetcmd.services.notifications import NotificationSink

logger = logging.getLogger(__name__)

TRIP_CANCELLED_REASON = "Shared trip cancelled"

LockFactory = Callable[[int], AsyncContextManager[None]]


@asynccontextmanager
async def trip_seat_lock(trip_id: int) -> AsyncIterator[None]:
    """Hold the Redis lock guarding seat allocation on *trip_id*."""
    redis = await get_redis()
    lock = DistributedLock(
        redis,
        f"shared_trip:{trip_id}",
        ttl_seconds=settings.seat_lock_ttl_seconds,
        wait_seconds=settings.seat_lock_wait_seconds,
    )
    try:
        async with lock:
            yield
    except LockNotAcquired as exc:
        logger.warning("Seat lock for shared trip %s is busy", trip_id)
        raise ResourceBusy("Shared trip is busy, please try again") from exc


async def refresh_seat_cache(
    bookings: BookingRepository, trip: SharedTripModel
) -> SeatPool:
    """
    Re-derive ``reserved_seats`` from the live bookings.  An open or full
    trip also flips between the two to match the new total.
    """
    pool = SeatPool(
        total_capacity=trip.total_capacity,
        reserved_seats=await bookings.sum_reserved_seats(trip.id),
    )
    trip.reserved_seats = pool.reserved_seats
    if SharedTripStatus(trip.status) in (SharedTripStatus.OPEN, SharedTripStatus.FULL):
        trip.status = pool.implied_status
    return pool


@dataclass
class SharedTripView:
    """A trip with its passengers (bookings with users) and display seat map."""

    trip: SharedTripModel
    passengers: list[BookingModel] = field(default_factory=list)
    seats: list[SeatAssignment] = field(default_factory=list)

    @property
    def available_seats(self) -> int:
        return max(0, self.trip.total_capacity - self.trip.reserved_seats)


class SharedTripService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationSink,
        lock_factory: LockFactory = trip_seat_lock,
    ):
        self.db = db
        self.notifier = notifier
        self.lock_factory = lock_factory
        self.trips = SharedTripRepository(db)
        self.bookings = BookingRepository(db)
        self.users = UserRepository(db)
        self.vehicles = VehicleRepository(db)

    # ── Queries ───────────────────────────────────────────────────────

    async def _view(self, trip: SharedTripModel) -> SharedTripView:
        passengers = [
            b
            for b in await self.bookings.get_for_trip(trip.id)
            if BookingStatus(b.status) != BookingStatus.CANCELLED
        ]
        seats = seat_map(
            trip.total_capacity,
            (
                (b.id, b.passenger_name or b.user.full_name, b.passenger_count)
                for b in passengers
            ),
        )
        return SharedTripView(trip=trip, passengers=passengers, seats=seats)

    async def list_trips(self, actor: UserModel) -> list[SharedTripView]:
        require_capability(
            actor,
            Permission.VIEW_BOOKINGS,
            message="You do not have permission to view shared trips",
        )
        return [await self._view(t) for t in await self.trips.list_with_relations()]

    async def get_trip(self, actor: UserModel, trip_id: int) -> SharedTripView:
        require_capability(
            actor,
            Permission.VIEW_BOOKINGS,
            message="You do not have permission to view shared trips",
        )
        trip = await self.trips.get_with_relations(trip_id)
        if trip is None:
            raise NotFound("Shared trip not found")
        return await self._view(trip)

    # ── Create ────────────────────────────────────────────────────────

    async def create_trip(
        self,
        actor: UserModel,
        *,
        vehicle_id: int,
        start_time: datetime,
        end_time: datetime,
        destination: str,
        notes: Optional[str] = None,
    ) -> SharedTripModel:
        """
        Open a seat pool.  Capacity, approver, reserved seats and status
        are derived here; callers cannot supply them.
        """
        require_capability(
            actor,
            Capability.APPROVER,
            message="Only approvers or admins can create shared trips",
        )
        vehicle = await self.vehicles.get_by_id(vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle not found")
        if vehicle.capacity < settings.shared_trip_min_capacity:
            raise ValidationError(
                f"Shared trips require a vehicle with at least "
                f"{settings.shared_trip_min_capacity} seats"
            )
        if VehicleStatus(vehicle.status) != VehicleStatus.AVAILABLE:
            raise ValidationError("Vehicle is not available")
        if end_time <= start_time:
            raise ValidationError("End time must be after start time")
        if not destination or not destination.strip():
            raise ValidationError("Destination is required")

        trip = await self.trips.create(
            SharedTripModel(
                vehicle_id=vehicle.id,
                approver_id=actor.id,
                start_time=start_time,
                end_time=end_time,
                destination=destination.strip(),
                notes=notes,
                status=SharedTripStatus.OPEN,
                total_capacity=vehicle.capacity,
                reserved_seats=0,
            )
        )
        logger.info(
            "Shared trip %s opened by user %s on vehicle %s (%d seats)",
            trip.id,
            actor.id,
            vehicle.id,
            trip.total_capacity,
        )
        return trip

    # ── Join ──────────────────────────────────────────────────────────

    async def join(
        self,
        actor: UserModel,
        trip_id: int,
        *,
        passenger_count: int,
        purpose: str,
        passenger_name: str,
        passenger_phone: str,
    ) -> BookingModel:
        require_capability(
            actor,
            Permission.VIEW_BOOKINGS,
            message="You do not have permission to join shared trips",
        )
        if passenger_count < 1:
            raise ValidationError("Passenger count must be at least 1")

        async with self.lock_factory(trip_id):
            trip = await self.trips.get_for_update(trip_id)
            if trip is None:
                raise NotFound("Shared trip not found")
            if SharedTripStatus(trip.status) != SharedTripStatus.OPEN:
                raise InvalidStateTransition(
                    f"Shared trip is {SharedTripStatus(trip.status).value}; "
                    f"only open trips can be joined"
                )

            pool = SeatPool(
                total_capacity=trip.total_capacity,
                reserved_seats=await self.bookings.sum_reserved_seats(trip.id),
            )
            if not pool.can_accommodate(passenger_count):
                logger.info(
                    "Join on shared trip %s rejected: %d requested, %d available",
                    trip.id,
                    passenger_count,
                    pool.available,
                )
                raise CapacityExceeded(pool.available)
            if await self.bookings.user_has_trip_booking(trip.id, actor.id):
                raise ValidationError("You have already joined this shared trip")

            new_status = pool.reserve(passenger_count)
            booking = await self.bookings.create(
                BookingModel(
                    vehicle_id=trip.vehicle_id,
                    user_id=actor.id,
                    approver_id=trip.approver_id,
                    drive_type=DriveType.DRIVER,
                    start_time=trip.start_time,
                    end_time=trip.end_time,
                    status=BookingStatus.APPROVED,
                    purpose=purpose,
                    destination=trip.destination,
                    passenger_count=passenger_count,
                    passenger_name=passenger_name,
                    passenger_phone=passenger_phone,
                    share_allowed=True,
                    shared_trip_id=trip.id,
                )
            )
            trip.reserved_seats = pool.reserved_seats
            trip.status = new_status

            vehicle = await self.vehicles.get_by_id(trip.vehicle_id)
            approver = await self.users.get_by_id(trip.approver_id)
            await self.db.commit()

        logger.info(
            "User %s joined shared trip %s with %d seat(s); %d/%d reserved",
            actor.id,
            trip_id,
            passenger_count,
            pool.reserved_seats,
            pool.total_capacity,
        )
        await self.notifier.notify(
            NotificationEvent.BOOKING_CREATED,
            approver,
            {"booking": booking, "vehicle": vehicle, "actor": actor, "requester": actor},
        )
        return booking

    # ── Status ────────────────────────────────────────────────────────

    async def change_status(
        self, actor: UserModel, trip_id: int, status: SharedTripStatus
    ) -> SharedTripModel:
        trip = await self.trips.get_for_update(trip_id)
        if trip is None:
            raise NotFound("Shared trip not found")
        current = SharedTripStatus(trip.status)
        if status not in SHARED_TRIP_TRANSITIONS.get(current, set()):
            sources = sorted(
                s.value for s, targets in SHARED_TRIP_TRANSITIONS.items() if status in targets
            )
            raise InvalidStateTransition(
                f"Cannot change shared trip from {current.value} to {status.value}; "
                f"trip must be {' or '.join(sources) or 'no status'}"
            )

        bookings = await self.bookings.get_for_trip(trip.id)
        roles = trip_actor_roles(actor, (b.driver_id for b in bookings if b.driver_id))
        permitted = {ActorRole.ADMIN, ActorRole.APPROVER}
        if status != SharedTripStatus.CANCELLED:
            permitted.add(ActorRole.DRIVER)
        if not roles & permitted:
            raise PermissionDenied("You are not allowed to change this shared trip")

        vehicle = await self.vehicles.get_by_id(trip.vehicle_id)
        if status == SharedTripStatus.IN_PROGRESS:
            if vehicle is not None:
                vehicle.status = VehicleStatus.IN_USE
            for b in bookings:
                if BookingStatus(b.status) == BookingStatus.APPROVED:
                    b.status = BookingStatus.IN_PROGRESS
        elif status == SharedTripStatus.COMPLETED:
            if vehicle is not None:
                vehicle.status = VehicleStatus.AVAILABLE
            for b in bookings:
                if BookingStatus(b.status) == BookingStatus.IN_PROGRESS:
                    b.status = BookingStatus.COMPLETED
        elif status == SharedTripStatus.CANCELLED:
            for b in bookings:
                if BookingStatus(b.status) in (BookingStatus.PENDING, BookingStatus.APPROVED):
                    b.status = BookingStatus.CANCELLED
                    b.cancellation_reason = TRIP_CANCELLED_REASON
            trip.reserved_seats = 0

        trip.status = status
        await self.db.flush()
        logger.info(
            "Shared trip %s: %s -> %s by user %s",
            trip.id,
            current.value,
            status.value,
            actor.id,
        )
        return trip

    # ── Delete ────────────────────────────────────────────────────────

    async def delete_trip(self, actor: UserModel, trip_id: int) -> int:
        """Delete the trip and its bookings.  Returns the number of bookings removed."""
        trip = await self.trips.get_by_id(trip_id)
        if trip is None:
            raise NotFound("Shared trip not found")
        if actor.is_driver:
            raise PermissionDenied("Drivers cannot delete shared trips")
        require_capability(
            actor,
            Capability.APPROVER,
            message="Only approvers or admins can delete shared trips",
        )

        if SharedTripStatus(trip.status) == SharedTripStatus.IN_PROGRESS:
            vehicle = await self.vehicles.get_by_id(trip.vehicle_id)
            if vehicle is not None and VehicleStatus(vehicle.status) == VehicleStatus.IN_USE:
                vehicle.status = VehicleStatus.AVAILABLE

        removed = await self.bookings.delete_for_trip(trip.id)
        await self.trips.delete(trip)
        logger.info(
            "Shared trip %s deleted by user %s (%d booking(s) removed)",
            trip_id,
            actor.id,
            removed,
        )
        return removed
