"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from fleetcmd.domain.enums import (
    BookingStatus,
    DriveType,
    Role,
    SharedTripStatus,
    VehicleCategory,
    VehicleStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=80)
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1, max_length=120)
    email: Optional[str] = Field(None, max_length=255)
    department: Optional[str] = Field(None, max_length=120)


class LoginRequest(BaseModel):
    username: str
    password: str


class BookingCreateRequest(BaseModel):
    vehicle_id: int
    start_time: datetime
    end_time: datetime
    purpose: str = Field(..., min_length=1)
    destination: Optional[str] = None
    mileage: int = Field(0, ge=0, description="Estimated distance for the trip.")
    approver_id: Optional[int] = None
    driver_id: Optional[int] = None
    drive_type: DriveType = DriveType.SELF
    passenger_count: int = Field(1, ge=1)
    passenger_name: Optional[str] = None
    passenger_phone: Optional[str] = None
    share_allowed: bool = False


class BookingStatusRequest(BaseModel):
    status: BookingStatus
    cancellation_reason: Optional[str] = None
    driver_id: Optional[int] = None


class AssignDriverRequest(BaseModel):
    driver_id: Optional[int] = None


class OdometerRequest(BaseModel):
    odometer: int = Field(..., description="Odometer reading in km.")


class SharedTripCreateRequest(BaseModel):
    """
    Capacity, approver, reserved seats and status are derived server-side;
    any such keys sent by the client are ignored.
    """

    vehicle_id: int = Field(..., gt=0)
    start_time: datetime
    end_time: datetime
    destination: str = Field(..., min_length=1)
    notes: Optional[str] = None


class JoinSharedTripRequest(BaseModel):
    passenger_count: int = Field(..., ge=1)
    purpose: str = Field(..., min_length=1)
    passenger_name: str = Field(..., min_length=1)
    passenger_phone: str = Field(..., min_length=1)


class SharedTripStatusRequest(BaseModel):
    status: SharedTripStatus


# ── Responses ─────────────────────────────────────────────────────────


class UserResponse(BaseModel):
    id: int
    username: str
    full_name: str
    email: Optional[str] = None
    department: Optional[str] = None
    role: Role
    permissions: list[str] = []
    is_approver: bool
    is_driver: bool

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: int
    username: str
    full_name: str
    email: Optional[str] = None

    model_config = {"from_attributes": True}


class VehicleSummary(BaseModel):
    id: int
    make: str
    model: str
    year: int
    license_plate: str
    category: VehicleCategory
    capacity: int
    status: VehicleStatus

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    vehicle_id: int
    user_id: int
    approver_id: Optional[int] = None
    driver_id: Optional[int] = None
    drive_type: DriveType
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    purpose: str
    destination: Optional[str] = None
    mileage: int
    start_odometer: Optional[int] = None
    end_odometer: Optional[int] = None
    cancellation_reason: Optional[str] = None
    passenger_count: int
    passenger_name: Optional[str] = None
    passenger_phone: Optional[str] = None
    share_allowed: bool
    shared_trip_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingDetailResponse(BookingResponse):
    vehicle: VehicleSummary
    user: UserSummary
    approver: Optional[UserSummary] = None
    driver: Optional[UserSummary] = None


class SharedTripResponse(BaseModel):
    id: int
    vehicle_id: int
    approver_id: int
    start_time: datetime
    end_time: datetime
    destination: Optional[str] = None
    notes: Optional[str] = None
    status: SharedTripStatus
    total_capacity: int
    reserved_seats: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PassengerResponse(BaseModel):
    booking: BookingResponse
    user: UserSummary


class SeatResponse(BaseModel):
    seat: int
    occupied: bool
    booking_id: Optional[int] = None
    passenger_name: Optional[str] = None


class SharedTripDetailResponse(SharedTripResponse):
    vehicle: VehicleSummary
    approver: UserSummary
    available_seats: int
    passengers: list[PassengerResponse] = []
    seats: list[SeatResponse] = []


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    message: str


class SessionInvalidatedResponse(BaseModel):
    message: str
    reason: str
    notification: str
