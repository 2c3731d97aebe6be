"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 2 approvers, 2 drivers and 4 staff accounts
    (password for every account: ``password123``)
  - 8 vehicles; the vans and the bus are large enough for shared trips
  - 1 open shared trip on the bus
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from fleetcmd.domain.enums import (
    DEFAULT_PERMISSIONS,
    Permission,
    Role,
    SharedTripStatus,
    VehicleCategory,
    VehicleStatus,
)
from fleetcmd.infrastructure.database import async_session_factory, engine
from fleetcmd.infrastructure.models import SharedTripModel, UserModel, VehicleModel
from fleetcmd.services.auth import hash_password

PASSWORD = "password123"

ALL_PERMISSIONS = [p.value for p in Permission]

USERS = [
    {"username": "admin", "full_name": "Fleet Administrator", "role": Role.ADMIN,
     "permissions": ALL_PERMISSIONS, "is_approver": True},
    {"username": "nkhumalo", "full_name": "Nomsa Khumalo", "department": "Operations",
     "is_approver": True},
    {"username": "jvanwyk", "full_name": "Johan van Wyk", "department": "Finance",
     "is_approver": True},
    {"username": "tmokoena", "full_name": "Thabo Mokoena", "department": "Transport",
     "is_driver": True},
    {"username": "snaidoo", "full_name": "Suresh Naidoo", "department": "Transport",
     "is_driver": True},
    {"username": "lpetersen", "full_name": "Lerato Petersen", "department": "Sales"},
    {"username": "mdlamini", "full_name": "Musa Dlamini", "department": "Engineering"},
    {"username": "abotha", "full_name": "Anika Botha", "department": "HR"},
    {"username": "kgovender", "full_name": "Kavitha Govender", "department": "Sales"},
]

VEHICLES = [
    {"make": "Toyota", "model": "Corolla", "year": 2022, "license_plate": "CA 123-456",
     "category": VehicleCategory.CAR, "capacity": 5, "current_mileage": 41200},
    {"make": "Volkswagen", "model": "Polo", "year": 2023, "license_plate": "CA 234-567",
     "category": VehicleCategory.CAR, "capacity": 5, "current_mileage": 18750},
    {"make": "Toyota", "model": "Fortuner", "year": 2021, "license_plate": "CA 345-678",
     "category": VehicleCategory.CAR, "capacity": 5, "current_mileage": 76300},
    {"make": "Toyota", "model": "Quantum", "year": 2020, "license_plate": "CA 456-789",
     "category": VehicleCategory.VAN, "capacity": 14, "current_mileage": 132400},
    {"make": "Mercedes-Benz", "model": "Vito", "year": 2022, "license_plate": "CA 567-890",
     "category": VehicleCategory.VAN, "capacity": 8, "current_mileage": 55100},
    {"make": "Hyundai", "model": "Staria", "year": 2023, "license_plate": "CA 678-901",
     "category": VehicleCategory.VAN, "capacity": 9, "current_mileage": 9800},
    {"make": "Mercedes-Benz", "model": "Sprinter", "year": 2019, "license_plate": "CA 789-012",
     "category": VehicleCategory.BUS, "capacity": 22, "current_mileage": 201500},
    {"make": "Isuzu", "model": "D-Max", "year": 2021, "license_plate": "CA 890-123",
     "category": VehicleCategory.TRUCK, "capacity": 2, "current_mileage": 88000,
     "status": VehicleStatus.MAINTENANCE},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        password_hash = hash_password(PASSWORD)
        user_models = []
        for u in USERS:
            m = UserModel(
                username=u["username"],
                password_hash=password_hash,
                full_name=u["full_name"],
                email=f"{u['username']}@example.com",
                department=u.get("department"),
                role=u.get("role", Role.STAFF),
                permissions=u.get("permissions", list(DEFAULT_PERMISSIONS)),
                is_approver=u.get("is_approver", False),
                is_driver=u.get("is_driver", False),
            )
            session.add(m)
            user_models.append(m)
        await session.flush()
        print(f"  Created {len(user_models)} users")

        # ── Vehicles ──────────────────────────────────────────────────
        vehicle_models = []
        for v in VEHICLES:
            m = VehicleModel(**{"status": VehicleStatus.AVAILABLE, **v})
            session.add(m)
            vehicle_models.append(m)
        await session.flush()
        print(f"  Created {len(vehicle_models)} vehicles")

        # ── Shared trip ───────────────────────────────────────────────
        bus = vehicle_models[6]
        start = (datetime.now(timezone.utc) + timedelta(days=3)).replace(
            hour=7, minute=30, second=0, microsecond=0
        )
        session.add(
            SharedTripModel(
                vehicle_id=bus.id,
                approver_id=user_models[1].id,
                start_time=start,
                end_time=start + timedelta(hours=10),
                destination="Stellenbosch regional office",
                notes="Quarterly planning day; return trip departs 16:30.",
                status=SharedTripStatus.OPEN,
                total_capacity=bus.capacity,
                reserved_seats=0,
            )
        )
        await session.flush()
        print("  Created 1 shared trip")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
