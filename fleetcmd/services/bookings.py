"""
Booking lifecycle
=================

Drives a single vehicle reservation through

    pending -> approved -> in_progress -> completed
    pending/approved -> rejected | cancelled
    cancelled -> pending | approved          (re-open)

Which edges exist and who may take them is declared once in
``BOOKING_TRANSITIONS``; this module only applies side effects:

* -> approved      vehicle goes ``in_use``; a driver may be assigned
* -> completed     vehicle goes back to ``available``
* approved/in_progress -> rejected/cancelled releases the vehicle too
* leaving cancelled clears ``cancellation_reason``

Vehicle side effects apply to standalone bookings only.  Bookings that
belong to a shared trip follow the trip's own status (see
``services.shared_trips``); their status changes run under the trip's
seat lock and refresh its cached seat total.  ``in_progress`` and
``completed`` are only reachable through start/end trip, which record the
odometer.

Notifications go out after the transaction commits.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fleetcmd.domain.entities import SeatPool, check_odometer
from fleetcmd.domain.enums import (
    ACTIVE_BOOKING_STATUSES,
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
    ValidationError,
)
from fleetcmd.domain.permissions import (
    Capability,
    authorize_booking_transition,
    booking_actor_roles,
    has_capability,
    require_capability,
)
from fleetcmd.infrastructure.models import BookingModel, UserModel, VehicleModel
from fleetcmd.infrastructure.repositories import (
    BookingRepository,
    SharedTripRepository,
    UserRepository,
    VehicleRepository,
)
from fleetcmd.services.notifications import NotificationSink
from fleetcmd.services.shared_trips import (
    LockFactory,
    refresh_seat_cache,
    trip_seat_lock,
)

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationSink,
        lock_factory: LockFactory = trip_seat_lock,
    ):
        self.db = db
        self.notifier = notifier
        self.lock_factory = lock_factory
        self.bookings = BookingRepository(db)
        self.trips = SharedTripRepository(db)
        self.users = UserRepository(db)
        self.vehicles = VehicleRepository(db)

    # ── Look-ups ──────────────────────────────────────────────────────

    async def _get_booking(self, booking_id: int) -> BookingModel:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    async def _get_vehicle(self, vehicle_id: int) -> VehicleModel:
        vehicle = await self.vehicles.get_by_id(vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle not found")
        return vehicle

    async def _get_driver(self, driver_id: int) -> UserModel:
        driver = await self.users.get_by_id(driver_id)
        if driver is None:
            raise NotFound("Driver not found")
        if not driver.is_driver:
            raise ValidationError("Selected user is not a driver")
        return driver

    async def list_bookings(self, actor: UserModel) -> list[BookingModel]:
        require_capability(
            actor,
            Permission.VIEW_BOOKINGS,
            message="You do not have permission to view bookings",
        )
        return await self.bookings.list_with_relations()

    async def get_booking(self, actor: UserModel, booking_id: int) -> BookingModel:
        booking = await self.bookings.get_with_relations(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        involved = booking.user_id == actor.id or booking_actor_roles(actor, booking)
        if not involved and not has_capability(actor, Permission.VIEW_BOOKINGS):
            raise PermissionDenied("You do not have permission to view this booking")
        return booking

    # ── Creation ──────────────────────────────────────────────────────

    async def create_booking(
        self,
        actor: UserModel,
        *,
        vehicle_id: int,
        start_time: datetime,
        end_time: datetime,
        purpose: str,
        destination: Optional[str] = None,
        mileage: int = 0,
        approver_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        drive_type: DriveType = DriveType.SELF,
        passenger_count: int = 1,
        passenger_name: Optional[str] = None,
        passenger_phone: Optional[str] = None,
        share_allowed: bool = False,
    ) -> BookingModel:
        vehicle = await self._get_vehicle(vehicle_id)
        if end_time <= start_time:
            raise ValidationError("End time must be after start time")
        if passenger_count < 1:
            raise ValidationError("Passenger count must be at least 1")
        if passenger_count > vehicle.capacity:
            raise ValidationError(
                f"Passenger count exceeds vehicle capacity of {vehicle.capacity}"
            )

        approver: Optional[UserModel] = None
        if approver_id is not None:
            approver = await self.users.get_by_id(approver_id)
            if approver is None:
                raise NotFound("Approver not found")
            if not has_capability(approver, Capability.APPROVER):
                raise ValidationError("Selected user is not an approver")
        if driver_id is not None:
            await self._get_driver(driver_id)

        booking = await self.bookings.create(
            BookingModel(
                vehicle_id=vehicle.id,
                user_id=actor.id,
                approver_id=approver_id,
                driver_id=driver_id,
                drive_type=drive_type,
                start_time=start_time,
                end_time=end_time,
                status=BookingStatus.PENDING,
                purpose=purpose,
                destination=destination,
                mileage=mileage,
                passenger_count=passenger_count,
                passenger_name=passenger_name,
                passenger_phone=passenger_phone,
                share_allowed=share_allowed,
            )
        )
        logger.info(
            "Booking %s created by user %s for vehicle %s",
            booking.id,
            actor.id,
            vehicle.id,
        )
        await self._commit_and_notify(
            NotificationEvent.BOOKING_CREATED,
            approver,
            {"booking": booking, "vehicle": vehicle, "actor": actor, "requester": actor},
        )
        return booking

    # ── Transitions ───────────────────────────────────────────────────

    async def _apply_vehicle_effects(
        self, booking: BookingModel, previous: BookingStatus, target: BookingStatus
    ) -> VehicleModel:
        vehicle = await self._get_vehicle(booking.vehicle_id)
        if booking.shared_trip_id is not None:
            return vehicle
        if target == BookingStatus.APPROVED:
            vehicle.status = VehicleStatus.IN_USE
        elif target == BookingStatus.COMPLETED:
            vehicle.status = VehicleStatus.AVAILABLE
        elif (
            target in (BookingStatus.REJECTED, BookingStatus.CANCELLED)
            and previous in ACTIVE_BOOKING_STATUSES
            and vehicle.status == VehicleStatus.IN_USE
        ):
            vehicle.status = VehicleStatus.AVAILABLE
        return vehicle

    async def _transition(
        self,
        actor: UserModel,
        booking: BookingModel,
        target: BookingStatus,
        *,
        cancellation_reason: Optional[str] = None,
    ) -> tuple[BookingStatus, VehicleModel]:
        authorize_booking_transition(actor, booking, target)
        previous = BookingStatus(booking.status)

        if target == BookingStatus.CANCELLED:
            reason = (cancellation_reason or "").strip()
            if not reason:
                raise ValidationError("A cancellation reason is required")
            booking.cancellation_reason = reason
        elif previous == BookingStatus.CANCELLED:
            booking.cancellation_reason = None

        booking.status = target
        vehicle = await self._apply_vehicle_effects(booking, previous, target)
        logger.info(
            "Booking %s: %s -> %s by user %s",
            booking.id,
            previous.value,
            target.value,
            actor.id,
        )
        return previous, vehicle

    async def _transition_trip_booking(
        self,
        actor: UserModel,
        booking: BookingModel,
        target: BookingStatus,
        *,
        cancellation_reason: Optional[str] = None,
    ) -> VehicleModel:
        """
        Move a booking that holds seats on a shared trip.  Runs under the
        trip's seat lock; leaving ``cancelled`` claims the seats again and
        is checked against the live total like a join.
        """
        trip = await self.trips.get_for_update(booking.shared_trip_id)
        if trip is None:
            raise NotFound("Shared trip not found")

        if BookingStatus(booking.status) == BookingStatus.CANCELLED:
            authorize_booking_transition(actor, booking, target)
            if SharedTripStatus(trip.status) != SharedTripStatus.OPEN:
                raise InvalidStateTransition(
                    f"Shared trip is {SharedTripStatus(trip.status).value}; "
                    f"only open trips can take back a booking"
                )
            pool = SeatPool(
                total_capacity=trip.total_capacity,
                reserved_seats=await self.bookings.sum_reserved_seats(trip.id),
            )
            if not pool.can_accommodate(booking.passenger_count):
                logger.info(
                    "Re-opening booking %s on shared trip %s rejected: "
                    "%d requested, %d available",
                    booking.id,
                    trip.id,
                    booking.passenger_count,
                    pool.available,
                )
                raise CapacityExceeded(pool.available)

        _, vehicle = await self._transition(
            actor, booking, target, cancellation_reason=cancellation_reason
        )
        await self.db.flush()
        pool = await refresh_seat_cache(self.bookings, trip)
        logger.info(
            "Shared trip %s now %d/%d reserved (%s)",
            trip.id,
            pool.reserved_seats,
            pool.total_capacity,
            SharedTripStatus(trip.status).value,
        )
        return vehicle

    async def _commit_and_notify(
        self,
        event: NotificationEvent,
        recipient: Optional[UserModel],
        context: dict[str, Any],
        *,
        requester: Optional[UserModel] = None,
    ) -> None:
        """Commit first so delivery never runs inside the open transaction."""
        await self.db.commit()
        await self.notifier.notify(event, recipient, context)
        if requester is not None:
            await self.notifier.notify(
                NotificationEvent.BOOKING_STATUS_CHANGED, requester, context
            )

    async def change_status(
        self,
        actor: UserModel,
        booking_id: int,
        status: BookingStatus,
        *,
        cancellation_reason: Optional[str] = None,
        driver_id: Optional[int] = None,
    ) -> BookingModel:
        if status in (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED):
            raise ValidationError(
                "Trips are started and ended with an odometer reading; "
                "use /start-trip or /end-trip"
            )
        booking = await self._get_booking(booking_id)
        driver: Optional[UserModel] = None
        if driver_id is not None:
            if status != BookingStatus.APPROVED:
                raise ValidationError("A driver can only be assigned when approving")
            if DriveType(booking.drive_type) != DriveType.DRIVER:
                raise ValidationError("Self-drive bookings cannot be assigned a driver")
            driver = await self._get_driver(driver_id)

        if booking.shared_trip_id is None:
            _, vehicle = await self._transition(
                actor, booking, status, cancellation_reason=cancellation_reason
            )
            if driver is not None:
                booking.driver_id = driver.id
            requester = await self.users.get_by_id(booking.user_id)
            await self.db.flush()
        else:
            async with self.lock_factory(booking.shared_trip_id):
                await self.db.refresh(booking)
                vehicle = await self._transition_trip_booking(
                    actor, booking, status, cancellation_reason=cancellation_reason
                )
                if driver is not None:
                    booking.driver_id = driver.id
                requester = await self.users.get_by_id(booking.user_id)
                await self.db.commit()

        await self._commit_and_notify(
            NotificationEvent.BOOKING_STATUS_CHANGED,
            requester,
            {"booking": booking, "vehicle": vehicle, "actor": actor},
        )
        return booking

    async def assign_driver(
        self, actor: UserModel, booking_id: int, driver_id: Optional[int]
    ) -> BookingModel:
        booking = await self._get_booking(booking_id)
        roles = booking_actor_roles(actor, booking)
        if not roles & {ActorRole.ADMIN, ActorRole.APPROVER}:
            raise PermissionDenied("Only the approver or an admin may assign a driver")
        if BookingStatus(booking.status) not in (
            BookingStatus.PENDING,
            BookingStatus.APPROVED,
        ):
            raise ValidationError(
                "A driver can only be assigned to a pending or approved booking"
            )
        if driver_id is not None:
            await self._get_driver(driver_id)
        booking.driver_id = driver_id
        await self.db.flush()
        logger.info("Booking %s: driver set to %s by user %s", booking.id, driver_id, actor.id)
        return booking

    async def _approver(self, booking: BookingModel) -> Optional[UserModel]:
        if not booking.approver_id:
            return None
        return await self.users.get_by_id(booking.approver_id)

    async def start_trip(
        self, actor: UserModel, booking_id: int, odometer: Any
    ) -> BookingModel:
        booking = await self._get_booking(booking_id)
        authorize_booking_transition(actor, booking, BookingStatus.IN_PROGRESS)
        reading = check_odometer(odometer)

        booking.start_odometer = reading
        _, vehicle = await self._transition(actor, booking, BookingStatus.IN_PROGRESS)
        approver = await self._approver(booking)
        await self.db.flush()

        await self._commit_and_notify(
            NotificationEvent.TRIP_STARTED,
            approver,
            {"booking": booking, "vehicle": vehicle, "actor": actor, "odometer": reading},
        )
        return booking

    async def end_trip(
        self, actor: UserModel, booking_id: int, odometer: Any
    ) -> BookingModel:
        booking = await self._get_booking(booking_id)
        authorize_booking_transition(actor, booking, BookingStatus.COMPLETED)
        reading = check_odometer(odometer, booking.start_odometer)

        booking.end_odometer = reading
        _, vehicle = await self._transition(actor, booking, BookingStatus.COMPLETED)
        if reading > (vehicle.current_mileage or 0):
            vehicle.current_mileage = reading
        approver = await self._approver(booking)
        requester = await self.users.get_by_id(booking.user_id)
        await self.db.flush()

        await self._commit_and_notify(
            NotificationEvent.TRIP_ENDED,
            approver,
            {"booking": booking, "vehicle": vehicle, "actor": actor, "odometer": reading},
            requester=requester,
        )
        return booking
