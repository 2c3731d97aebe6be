"""
Shared test fixtures.

Uses a throwaway SQLite database file (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every test gets a fresh schema built from the
production models.  The Redis seat lock is replaced by an in-process
``asyncio.Lock`` per trip, and notifications are captured instead of sent.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fleetcmd.api.app import create_app
from fleetcmd.api.dependencies import get_db, get_notifier, get_seat_lock
from fleetcmd.api.middleware import limiter
from fleetcmd.domain.enums import (
    DEFAULT_PERMISSIONS,
    BookingStatus,
    DriveType,
    Permission,
    Role,
    SharedTripStatus,
    VehicleCategory,
    VehicleStatus,
)
from fleetcmd.infrastructure.database import Base
from fleetcmd.infrastructure.models import (
    BookingModel,
    SharedTripModel,
    UserModel,
    VehicleModel,
)
from fleetcmd.services.auth import hash_password
from fleetcmd.services.notifications import NotificationSink

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)

START = datetime(2026, 11, 2, 8, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=9)


# ── Doubles ───────────────────────────────────────────────────────────


class RecordingNotifier(NotificationSink):
    """Renders every event like production but keeps it instead of sending."""

    def __init__(self):
        super().__init__(webhook_url=None)
        self.sent: list[tuple[str, str, str]] = []

    async def _deliver(self, event, message) -> None:
        self.sent.append((event.value, message.to, message.subject))

    def events_for(self, email: str) -> list[str]:
        return [event for event, to, _ in self.sent if to == email]


def local_lock_factory():
    locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def factory(trip_id: int):
        async with locks[trip_id]:
            yield

    return factory


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fleetcmd.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Factory:
    """Inserts committed rows, each in its own short-lived session."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._plates = 0

    async def _save(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def user(
        self,
        username: str,
        *,
        role: Role = Role.STAFF,
        is_approver: bool = False,
        is_driver: bool = False,
        permissions: list[str] | None = None,
    ) -> UserModel:
        return await self._save(
            UserModel(
                username=username,
                password_hash=PASSWORD_HASH,
                full_name=username.title(),
                email=f"{username}@example.com",
                role=role,
                permissions=(
                    list(DEFAULT_PERMISSIONS) if permissions is None else permissions
                ),
                is_approver=is_approver,
                is_driver=is_driver,
            )
        )

    async def admin(self, username: str = "admin") -> UserModel:
        return await self.user(
            username,
            role=Role.ADMIN,
            permissions=[p.value for p in Permission],
        )

    async def vehicle(
        self,
        *,
        capacity: int = 5,
        status: VehicleStatus = VehicleStatus.AVAILABLE,
        current_mileage: int = 0,
    ) -> VehicleModel:
        self._plates += 1
        return await self._save(
            VehicleModel(
                make="Toyota",
                model="Quantum" if capacity > 5 else "Corolla",
                year=2022,
                license_plate=f"CA {self._plates:03d}-000",
                category=VehicleCategory.VAN if capacity > 5 else VehicleCategory.CAR,
                capacity=capacity,
                current_mileage=current_mileage,
                status=status,
            )
        )

    async def booking(
        self,
        requester: UserModel,
        vehicle: VehicleModel,
        *,
        status: BookingStatus = BookingStatus.PENDING,
        approver: UserModel | None = None,
        driver: UserModel | None = None,
        drive_type: DriveType = DriveType.SELF,
        passenger_count: int = 1,
        start_odometer: int | None = None,
        shared_trip: SharedTripModel | None = None,
    ) -> BookingModel:
        return await self._save(
            BookingModel(
                vehicle_id=vehicle.id,
                user_id=requester.id,
                approver_id=approver.id if approver else None,
                driver_id=driver.id if driver else None,
                drive_type=drive_type,
                start_time=START,
                end_time=END,
                status=status,
                purpose="Site visit",
                destination="Paarl depot",
                passenger_count=passenger_count,
                start_odometer=start_odometer,
                shared_trip_id=shared_trip.id if shared_trip else None,
                share_allowed=shared_trip is not None,
            )
        )

    async def trip(
        self,
        vehicle: VehicleModel,
        approver: UserModel,
        *,
        status: SharedTripStatus = SharedTripStatus.OPEN,
        reserved_seats: int = 0,
    ) -> SharedTripModel:
        return await self._save(
            SharedTripModel(
                vehicle_id=vehicle.id,
                approver_id=approver.id,
                start_time=START,
                end_time=END,
                destination="Stellenbosch office",
                status=status,
                total_capacity=vehicle.capacity,
                reserved_seats=reserved_seats,
            )
        )

    async def reload(self, model, pk):
        async with self.session_factory() as session:
            return await session.get(model, pk)


@pytest_asyncio.fixture
async def factory(session_factory) -> Factory:
    return Factory(session_factory)


# ── Application ───────────────────────────────────────────────────────


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def seat_lock():
    return local_lock_factory()


@pytest_asyncio.fixture
async def app(session_factory, notifier, seat_lock):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_seat_lock] = lambda: seat_lock
    limiter.reset()
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_client(app):
    """Build independent clients (own cookie jars) against the same app."""
    clients: list[AsyncClient] = []

    def _make() -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def login():
    async def _login(client: AsyncClient, username: str, password: str = PASSWORD):
        resp = await client.post(
            "/api/login", json={"username": username, "password": password}
        )
        assert resp.status_code == 200, resp.text
        return resp

    return _login
