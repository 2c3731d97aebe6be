"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    BookingModel,
    SessionModel,
    SharedTripModel,
    UserModel,
    VehicleModel,
)
from fleetcmd.domain.enums import BookingStatus


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_by_username(self, username: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.username == username)
        )
        return result.scalar_one_or_none()

    async def get_approvers(self) -> list[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.is_approver.is_(True))
            .order_by(UserModel.full_name)
        )
        return list(result.scalars().all())

    async def get_drivers(self) -> list[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.is_driver.is_(True))
            .order_by(UserModel.full_name)
        )
        return list(result.scalars().all())

    async def set_current_session(
        self, user: UserModel, session_id: Optional[str]
    ) -> None:
        user.current_session_id = session_id
        await self.session.flush()


class SessionRepository:
    """Server-side session store."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, session_id: str, user_id: int, expires_at: datetime
    ) -> SessionModel:
        row = SessionModel(id=session_id, user_id=user_id, expires_at=expires_at)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_by_id(self, session_id: str) -> Optional[SessionModel]:
        return await self.session.get(SessionModel, session_id)

    async def delete(self, session_id: str) -> None:
        await self.session.execute(
            delete(SessionModel).where(SessionModel.id == session_id)
        )


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)


def _booking_with_relations():
    return select(BookingModel).options(
        selectinload(BookingModel.vehicle),
        selectinload(BookingModel.user),
        selectinload(BookingModel.approver),
        selectinload(BookingModel.driver),
    )


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def get_with_relations(self, booking_id: int) -> Optional[BookingModel]:
        result = await self.session.execute(
            _booking_with_relations()
            .where(BookingModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_with_relations(self) -> list[BookingModel]:
        """Bookings joined to vehicle, requester, approver and driver."""
        result = await self.session.execute(
            _booking_with_relations()
            .order_by(BookingModel.start_time.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_for_trip(self, trip_id: int) -> list[BookingModel]:
        """Linked bookings in join order."""
        result = await self.session.execute(
            select(BookingModel)
            .options(selectinload(BookingModel.user))
            .where(BookingModel.shared_trip_id == trip_id)
            .order_by(BookingModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def sum_reserved_seats(self, trip_id: int) -> int:
        """Live seat total over the trip's non-cancelled bookings."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(BookingModel.passenger_count), 0)).where(
                BookingModel.shared_trip_id == trip_id,
                BookingModel.status != BookingStatus.CANCELLED,
            )
        )
        return int(result.scalar() or 0)

    async def user_has_trip_booking(self, trip_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.shared_trip_id == trip_id,
                BookingModel.user_id == user_id,
                BookingModel.status != BookingStatus.CANCELLED,
            )
        )
        return (result.scalar() or 0) > 0

    async def delete_for_trip(self, trip_id: int) -> int:
        result = await self.session.execute(
            delete(BookingModel).where(BookingModel.shared_trip_id == trip_id)
        )
        return result.rowcount or 0


class SharedTripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: SharedTripModel) -> SharedTripModel:
        self.session.add(trip)
        await self.session.flush()
        return trip

    async def get_by_id(self, trip_id: int) -> Optional[SharedTripModel]:
        return await self.session.get(SharedTripModel, trip_id)

    async def get_for_update(self, trip_id: int) -> Optional[SharedTripModel]:
        """SELECT ... FOR UPDATE so concurrent joins queue on the trip row."""
        result = await self.session.execute(
            select(SharedTripModel)
            .where(SharedTripModel.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_with_relations(self, trip_id: int) -> Optional[SharedTripModel]:
        result = await self.session.execute(
            select(SharedTripModel)
            .options(
                selectinload(SharedTripModel.vehicle),
                selectinload(SharedTripModel.approver),
            )
            .where(SharedTripModel.id == trip_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_with_relations(self) -> list[SharedTripModel]:
        result = await self.session.execute(
            select(SharedTripModel)
            .options(
                selectinload(SharedTripModel.vehicle),
                selectinload(SharedTripModel.approver),
            )
            .order_by(SharedTripModel.start_time)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def delete(self, trip: SharedTripModel) -> None:
        await self.session.delete(trip)
        await self.session.flush()
