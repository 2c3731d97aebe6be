"""
Shared trip endpoints
=====================

GET    /api/shared-trips            -- trips with vehicle, approver, passengers and seat map
GET    /api/shared-trips/{id}       -- one trip in the same shape
POST   /api/shared-trips            -- open a seat pool (approvers / admins)
POST   /api/shared-trips/{id}/join  -- claim seats; creates a pre-approved booking
PUT    /api/shared-trips/{id}/status -- start / complete / cancel the trip
DELETE /api/shared-trips/{id}       -- delete the trip and its bookings
"""

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
    BookingResponse,
    JoinSharedTripRequest,
    MessageResponse,
    PassengerResponse,
    SeatResponse,
    SharedTripCreateRequest,
    SharedTripDetailResponse,
    SharedTripResponse,
    SharedTripStatusRequest,
    UserSummary,
    VehicleSummary,
)
from fleetcmd.config import settings
from fleetcmd.infrastructure.models import UserModel
from fleetcmd.services.notifications import NotificationSink
from fleetcmd.services.shared_trips import (
    LockFactory,
    SharedTripService,
    SharedTripView,
)

router = APIRouter(prefix="/shared-trips", tags=["shared-trips"])


def _service(
    db: AsyncSession, notifier: NotificationSink, seat_lock: LockFactory
) -> SharedTripService:
    return SharedTripService(db, notifier, lock_factory=seat_lock)


def _detail(view: SharedTripView) -> SharedTripDetailResponse:
    trip = view.trip
    return SharedTripDetailResponse(
        **SharedTripResponse.model_validate(trip).model_dump(),
        vehicle=VehicleSummary.model_validate(trip.vehicle),
        approver=UserSummary.model_validate(trip.approver),
        available_seats=view.available_seats,
        passengers=[
            PassengerResponse(
                booking=BookingResponse.model_validate(b),
                user=UserSummary.model_validate(b.user),
            )
            for b in view.passengers
        ],
        seats=[
            SeatResponse(
                seat=s.seat,
                occupied=s.occupied,
                booking_id=s.booking_id,
                passenger_name=s.passenger_name,
            )
            for s in view.seats
        ],
    )


@router.get(
    "",
    response_model=list[SharedTripDetailResponse],
    summary="List shared trips",
)
@limiter.limit(settings.rate_limit)
async def list_trips(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    views = await _service(db, notifier, seat_lock).list_trips(user)
    return [_detail(v) for v in views]


@router.get(
    "/{trip_id}",
    response_model=SharedTripDetailResponse,
    summary="Get a shared trip",
)
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    return _detail(await _service(db, notifier, seat_lock).get_trip(user, trip_id))


@router.post(
    "",
    status_code=201,
    response_model=SharedTripResponse,
    summary="Open a shared trip",
)
@limiter.limit(settings.rate_limit)
async def create_trip(
    request: Request,
    body: SharedTripCreateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    return await _service(db, notifier, seat_lock).create_trip(
        user, **body.model_dump()
    )


@router.post(
    "/{trip_id}/join",
    status_code=201,
    response_model=BookingResponse,
    summary="Join a shared trip",
    description=(
        "Reserves seats on an open trip. Remaining capacity is recomputed "
        "from the trip's bookings under a per-trip lock, so concurrent "
        "joins can never oversell the vehicle."
    ),
)
@limiter.limit(settings.rate_limit)
async def join_trip(
    request: Request,
    trip_id: int,
    body: JoinSharedTripRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    return await _service(db, notifier, seat_lock).join(
        user, trip_id, **body.model_dump()
    )


@router.put(
    "/{trip_id}/status",
    response_model=SharedTripResponse,
    summary="Change a shared trip's status",
)
@limiter.limit(settings.rate_limit)
async def change_status(
    request: Request,
    trip_id: int,
    body: SharedTripStatusRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    return await _service(db, notifier, seat_lock).change_status(
        user, trip_id, body.status
    )


@router.delete(
    "/{trip_id}",
    response_model=MessageResponse,
    summary="Delete a shared trip and its bookings",
)
@limiter.limit(settings.rate_limit)
async def delete_trip(
    request: Request,
    trip_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    seat_lock: LockFactory = Depends(get_seat_lock),
):
    await _service(db, notifier, seat_lock).delete_trip(user, trip_id)
    return MessageResponse(message="Shared trip deleted")
