"""
Domain entities with business logic.

Patterns used
-------------
- ``SeatPool`` encapsulates the shared-trip capacity rule.  The
  reserved figure it is built from must come from the live bookings,
  never from the cached ``reserved_seats`` column.
- ``seat_map`` lays out seats for display in passenger-join order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .enums import SharedTripStatus
from .errors import CapacityExceeded, ValidationError


@dataclass
class SeatPool:
    total_capacity: int
    reserved_seats: int = 0

    @property
    def available(self) -> int:
        return max(0, self.total_capacity - self.reserved_seats)

    def can_accommodate(self, seats: int) -> bool:
        return self.reserved_seats + seats <= self.total_capacity

    def reserve(self, seats: int) -> SharedTripStatus:
        """Claim *seats*; return the trip status the pool now implies."""
        if seats < 1:
            raise ValidationError("Passenger count must be at least 1")
        if not self.can_accommodate(seats):
            raise CapacityExceeded(self.available)
        self.reserved_seats += seats
        return self.implied_status

    @property
    def implied_status(self) -> SharedTripStatus:
        if self.reserved_seats >= self.total_capacity:
            return SharedTripStatus.FULL
        return SharedTripStatus.OPEN


@dataclass(frozen=True)
class SeatAssignment:
    seat: int
    booking_id: Optional[int] = None
    passenger_name: Optional[str] = None

    @property
    def occupied(self) -> bool:
        return self.booking_id is not None


def seat_map(
    total_capacity: int, parties: Iterable[tuple[int, Optional[str], int]]
) -> list[SeatAssignment]:
    """
    Assign seats greedily: the first party to join takes the first
    ``passenger_count`` seats, the next party the following ones, and so on.

    *parties* yields ``(booking_id, passenger_name, passenger_count)`` in
    join order.  Purely presentational.
    """
    seats: list[SeatAssignment] = []
    for booking_id, name, count in parties:
        for _ in range(count):
            if len(seats) >= total_capacity:
                break
            seats.append(SeatAssignment(len(seats) + 1, booking_id, name))
    while len(seats) < total_capacity:
        seats.append(SeatAssignment(len(seats) + 1))
    return seats


def check_odometer(reading: object, start: Optional[int] = None) -> int:
    """Validate an odometer reading, optionally against the trip's start value."""
    if isinstance(reading, bool) or not isinstance(reading, int):
        raise ValidationError("Odometer reading must be a whole number")
    if reading < 0:
        raise ValidationError("Odometer reading must not be negative")
    if start is not None and reading < start:
        raise ValidationError(
            f"End odometer ({reading}) cannot be less than start odometer ({start})"
        )
    return reading
