"""
Booking endpoints
=================

GET  /api/bookings                  -- list bookings with vehicle/requester/approver/driver
GET  /api/bookings/{id}             -- one booking with its relations
POST /api/bookings                  -- request a vehicle (starts ``pending``)
PUT  /api/bookings/{id}/status      -- approve / reject / cancel / re-open
PUT  /api/bookings/{id}/driver      -- assign or clear the driver
PUT  /api/bookings/{id}/start-trip  -- record start odometer (approved -> in_progress)
PUT  /api/bookings/{id}/end-trip    -- record end odometer (-> completed)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcmd.api.dependencies import (
    get_current_user,
    get_db,
    get_notifier,
    get_seat_lock,
)
from fleetcmd.api.middleware import limiter
from fleetcmd.api.schemas import (
    AssignDriverRequest,
    BookingCreateRequest,
    BookingDetailResponse,
    BookingResponse,
    BookingStatusRequest,
    OdometerRequest,
)
from fleetcmd.config import settings
from fleetcmd.infrastructure.models import UserModel
from fleetcmd.services.bookings import BookingService
from fleetcmd.services.notifications import NotificationSink
from fleetcmd.services.shared_trips import LockFactory

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _service(
    db: AsyncSession,
    notifier: NotificationSink,
    seat_lock: Optional[LockFactory] = None,
) -> BookingService:
    if seat_lock is None:
        return BookingService(db, notifier)
    return BookingService(db, notifier, lock_factory=seat_lock)


@router.get(
    "",
    response_model=list[BookingDetailResponse],
    summary="List bookings",
)
@limiter.limit(settings.rate_limit)
async def list_bookings(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return await _service(db, notifier).list_bookings(user)


@router.get(
    "/{booking_id}",
    response_model=BookingDetailResponse,
    summary="Get a booking",
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return await _service(db, notifier).get_booking(user, booking_id)


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Request a vehicle",
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return await _service(db, notifier).create_booking(user, **body.model_dump())


@router.put(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Change a booking's status",
    description=(
        "Approves, rejects, cancels or re-opens the booking. Cancelling "
        "requires a reason; approving a chauffeured booking may assign a "
        "driver. Starting and ending a trip go through start-trip and "
        "end-trip."
    ),
)
@limiter.limit(settings.rate_limit)
async def change_status(
    request: Request,
    booking_id: int,
    body: BookingStatusRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    return await _service(db, notifier, seat_lock).change_status(
        user,
        booking_id,
        body.status,
        cancellation_reason=body.cancellation_reason,
        driver_id=body.driver_id,
    )


@router.put(
    "/{booking_id}/driver",
    response_model=BookingResponse,
    summary="Assign a driver",
)
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    booking_id: int,
    body: AssignDriverRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return await _service(db, notifier).assign_driver(user, booking_id, body.driver_id)


@router.put(
    "/{booking_id}/start-trip",
    response_model=BookingResponse,
    summary="Start the trip",
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    booking_id: int,
    body: OdometerRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return await _service(db, notifier).start_trip(user, booking_id, body.odometer)


@router.put(
    "/{booking_id}/end-trip",
    response_model=BookingResponse,
    summary="End the trip",
)
@limiter.limit(settings.rate_limit)
async def end_trip(
    request: Request,
    booking_id: int,
    body: OdometerRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    return await _service(db, notifier).end_trip(user, booking_id, body.odometer)
