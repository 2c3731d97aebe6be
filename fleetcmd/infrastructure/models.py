"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``         -- accounts with role, capability flags and the single
                       authorised session id
* ``sessions``      -- server-side session store
* ``vehicles``      -- fleet vehicles with seat capacity and mirrored status
* ``shared_trips``  -- seat pools on one vehicle for one time window
* ``bookings``      -- reservation requests, optionally linked to a shared trip

Indexes
-------
* **B-Tree** on ``status``, ``vehicle_id``, ``user_id``, ``shared_trip_id``
  and ``sessions.user_id`` for the look-ups used by the lifecycle and
  allocator.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from fleetcmd.domain.enums import (
    DEFAULT_PERMISSIONS,
    BookingStatus,
    DriveType,
    Role,
    SharedTripStatus,
    VehicleCategory,
    VehicleStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    # store the lowercase values, not the member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(80), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=True)
    department = Column(String(120), nullable=True)
    role = Column(_enum(Role, "role"), default=Role.CUSTOMER, nullable=False)
    permissions = Column(JSON, default=lambda: list(DEFAULT_PERMISSIONS), nullable=False)
    is_approver = Column(Boolean, default=False, nullable=False)
    is_driver = Column(Boolean, default=False, nullable=False)
    current_session_id = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class SessionModel(Base):
    __tablename__ = "sessions"

    id = Column(String(128), primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_sessions_user", "user_id"),)


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    make = Column(String(80), nullable=False)
    model = Column(String(80), nullable=False)
    year = Column(Integer, nullable=False)
    license_plate = Column(String(32), unique=True, nullable=False)
    category = Column(
        _enum(VehicleCategory, "vehicle_category"),
        default=VehicleCategory.CAR,
        nullable=False,
    )
    capacity = Column(Integer, default=5, nullable=False)
    current_mileage = Column(Integer, default=0, nullable=False)
    status = Column(
        _enum(VehicleStatus, "vehicle_status"),
        default=VehicleStatus.AVAILABLE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("idx_vehicles_status", "status"),)


class SharedTripModel(Base):
    __tablename__ = "shared_trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    destination = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(
        _enum(SharedTripStatus, "shared_trip_status"),
        default=SharedTripStatus.OPEN,
        nullable=False,
    )
    total_capacity = Column(Integer, nullable=False)
    # cache only; the allocator recomputes from bookings on every join
    reserved_seats = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    vehicle = relationship("VehicleModel", lazy="raise")
    approver = relationship("UserModel", lazy="raise")

    __table_args__ = (
        Index("idx_shared_trips_status", "status"),
        Index("idx_shared_trips_vehicle", "vehicle_id"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    drive_type = Column(
        _enum(DriveType, "drive_type"), default=DriveType.SELF, nullable=False
    )
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        _enum(BookingStatus, "booking_status"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    purpose = Column(Text, nullable=False)
    destination = Column(String(255), nullable=True)
    mileage = Column(Integer, default=0, nullable=False)
    start_odometer = Column(Integer, nullable=True)
    end_odometer = Column(Integer, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    passenger_count = Column(Integer, default=1, nullable=False)
    passenger_name = Column(String(120), nullable=True)
    passenger_phone = Column(String(40), nullable=True)
    share_allowed = Column(Boolean, default=False, nullable=False)
    shared_trip_id = Column(Integer, ForeignKey("shared_trips.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    vehicle = relationship("VehicleModel", lazy="raise")
    user = relationship("UserModel", foreign_keys=[user_id], lazy="raise")
    approver = relationship("UserModel", foreign_keys=[approver_id], lazy="raise")
    driver = relationship("UserModel", foreign_keys=[driver_id], lazy="raise")

    __table_args__ = (
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_vehicle", "vehicle_id"),
        Index("idx_bookings_user", "user_id"),
        Index("idx_bookings_shared_trip", "shared_trip_id"),
    )
