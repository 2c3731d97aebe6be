"""
Shared-trip allocator tests through the HTTP API.

Seat totals are always recomputed from the linked bookings, so several
tests deliberately leave the cached ``reserved_seats`` column stale.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from fleetcmd.domain.enums import BookingStatus, SharedTripStatus, VehicleStatus
from fleetcmd.infrastructure.models import BookingModel, SharedTripModel, VehicleModel

TRIP_BODY = {
    "start_time": "2026-11-02T07:30:00Z",
    "end_time": "2026-11-02T17:30:00Z",
    "destination": "Stellenbosch office",
}

JOIN_BODY = {
    "purpose": "Quarterly planning",
    "passenger_name": "Lerato Petersen",
    "passenger_phone": "+27 82 555 0101",
}


@pytest_asyncio.fixture
async def people(factory):
    return {
        "staff": await factory.user("lerato"),
        "approver": await factory.user("nomsa", is_approver=True),
        "driver": await factory.user("thabo", is_driver=True),
    }


async def count_bookings(session_factory, trip_id: int) -> int:
    async with session_factory() as s:
        result = await s.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(BookingModel.shared_trip_id == trip_id)
        )
        return result.scalar()


async def live_seats(session_factory, trip_id: int) -> int:
    async with session_factory() as s:
        result = await s.execute(
            select(func.coalesce(func.sum(BookingModel.passenger_count), 0)).where(
                BookingModel.shared_trip_id == trip_id,
                BookingModel.status != BookingStatus.CANCELLED,
            )
        )
        return result.scalar()


class TestCreateTrip:
    @pytest.mark.asyncio
    async def test_server_derives_capacity_and_approver(
        self, client, factory, people, login
    ):
        van = await factory.vehicle(capacity=14)
        await login(client, "nomsa")
        resp = await client.post(
            "/api/shared-trips",
            json={
                **TRIP_BODY,
                "vehicle_id": van.id,
                "total_capacity": 99,
                "reserved_seats": 5,
                "approver_id": people["staff"].id,
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["total_capacity"] == 14
        assert body["reserved_seats"] == 0
        assert body["status"] == "open"
        assert body["approver_id"] == people["approver"].id

    @pytest.mark.asyncio
    async def test_small_vehicle_rejected(self, client, factory, people, login):
        car = await factory.vehicle(capacity=5)
        await login(client, "nomsa")
        resp = await client.post("/api/shared-trips", json={**TRIP_BODY, "vehicle_id": car.id})
        assert resp.status_code == 400
        assert "at least 6 seats" in resp.json()["message"]

    @pytest.mark.asyncio
    async def test_vehicle_must_be_available(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8, status=VehicleStatus.MAINTENANCE)
        await login(client, "nomsa")
        resp = await client.post("/api/shared-trips", json={**TRIP_BODY, "vehicle_id": van.id})
        assert resp.status_code == 400
        assert resp.json() == {"message": "Vehicle is not available"}

    @pytest.mark.asyncio
    async def test_staff_cannot_create(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        await login(client, "lerato")
        resp = await client.post("/api/shared-trips", json={**TRIP_BODY, "vehicle_id": van.id})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_destination(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        await login(client, "nomsa")
        resp = await client.post(
            "/api/shared-trips",
            json={**TRIP_BODY, "vehicle_id": van.id, "destination": "  "},
        )
        assert resp.status_code == 400


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_creates_approved_booking(
        self, client, factory, people, login, notifier
    ):
        van = await factory.vehicle(capacity=7)
        trip = await factory.trip(van, people["approver"])
        await login(client, "lerato")

        resp = await client.post(
            f"/api/shared-trips/{trip.id}/join",
            json={**JOIN_BODY, "passenger_count": 3},
        )
        assert resp.status_code == 201
        booking = resp.json()
        assert booking["status"] == "approved"
        assert booking["shared_trip_id"] == trip.id
        assert booking["share_allowed"] is True
        assert booking["drive_type"] == "driver"
        assert booking["approver_id"] == people["approver"].id
        assert booking["vehicle_id"] == van.id

        row = await factory.reload(SharedTripModel, trip.id)
        assert row.reserved_seats == 3
        assert row.status == SharedTripStatus.OPEN
        assert notifier.events_for("nomsa@example.com") == ["booking_created"]

    @pytest.mark.asyncio
    async def test_capacity_recomputed_from_bookings(
        self, client, factory, people, login, session_factory
    ):
        van = await factory.vehicle(capacity=7)
        # cached counter says 0; live bookings hold 5 seats
        trip = await factory.trip(van, people["approver"], reserved_seats=0)
        other = await factory.user("musa")
        await factory.booking(
            other, van, status=BookingStatus.APPROVED, passenger_count=5, shared_trip=trip
        )
        await login(client, "lerato")

        resp = await client.post(
            f"/api/shared-trips/{trip.id}/join",
            json={**JOIN_BODY, "passenger_count": 3},
        )
        assert resp.status_code == 400
        assert resp.json() == {"message": "Only 2 seats available"}
        assert await count_bookings(session_factory, trip.id) == 1

    @pytest.mark.asyncio
    async def test_cancelled_bookings_release_seats(self, client, factory, people, login):
        van = await factory.vehicle(capacity=7)
        trip = await factory.trip(van, people["approver"], reserved_seats=4)
        other = await factory.user("musa")
        await factory.booking(
            other, van, status=BookingStatus.CANCELLED, passenger_count=4, shared_trip=trip
        )
        await login(client, "lerato")

        resp = await client.post(
            f"/api/shared-trips/{trip.id}/join",
            json={**JOIN_BODY, "passenger_count": 7},
        )
        assert resp.status_code == 201
        row = await factory.reload(SharedTripModel, trip.id)
        assert row.reserved_seats == 7
        assert row.status == SharedTripStatus.FULL

    @pytest.mark.asyncio
    async def test_full_trip_cannot_be_joined(self, make_client, factory, people, login):
        van = await factory.vehicle(capacity=6)
        trip = await factory.trip(van, people["approver"])
        await factory.user("musa")
        first, second = make_client(), make_client()
        await login(first, "lerato")
        await login(second, "musa")

        resp = await first.post(
            f"/api/shared-trips/{trip.id}/join", json={**JOIN_BODY, "passenger_count": 6}
        )
        assert resp.status_code == 201

        resp = await second.post(
            f"/api/shared-trips/{trip.id}/join", json={**JOIN_BODY, "passenger_count": 1}
        )
        assert resp.status_code == 400
        assert "only open trips can be joined" in resp.json()["message"]

    @pytest.mark.asyncio
    async def test_cannot_join_twice(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"])
        await login(client, "lerato")
        url = f"/api/shared-trips/{trip.id}/join"

        assert (await client.post(url, json={**JOIN_BODY, "passenger_count": 1})).status_code == 201
        resp = await client.post(url, json={**JOIN_BODY, "passenger_count": 1})
        assert resp.status_code == 400
        assert resp.json() == {"message": "You have already joined this shared trip"}

    @pytest.mark.asyncio
    async def test_zero_passengers_rejected(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"])
        await login(client, "lerato")
        resp = await client.post(
            f"/api/shared-trips/{trip.id}/join", json={**JOIN_BODY, "passenger_count": 0}
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_trip(self, client, people, login):
        await login(client, "lerato")
        resp = await client.post(
            "/api/shared-trips/999/join", json={**JOIN_BODY, "passenger_count": 1}
        )
        assert resp.status_code == 404


class TestDetail:
    @pytest.mark.asyncio
    async def test_seat_map_and_passengers(self, client, factory, people, login):
        van = await factory.vehicle(capacity=6)
        trip = await factory.trip(van, people["approver"], reserved_seats=3)
        musa = await factory.user("musa")
        first = await factory.booking(
            musa, van, status=BookingStatus.APPROVED, passenger_count=2, shared_trip=trip
        )
        second = await factory.booking(
            people["staff"], van, status=BookingStatus.APPROVED, passenger_count=1, shared_trip=trip
        )
        await login(client, "lerato")

        resp = await client.get(f"/api/shared-trips/{trip.id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["available_seats"] == 3
        assert body["vehicle"]["id"] == van.id
        assert body["approver"]["username"] == "nomsa"
        assert [p["user"]["username"] for p in body["passengers"]] == ["musa", "lerato"]
        assert [s["booking_id"] for s in body["seats"]] == [
            first.id,
            first.id,
            second.id,
            None,
            None,
            None,
        ]

    @pytest.mark.asyncio
    async def test_list(self, client, factory, people, login):
        van = await factory.vehicle(capacity=6)
        await factory.trip(van, people["approver"])
        await login(client, "lerato")
        resp = await client.get("/api/shared-trips")
        assert resp.status_code == 200
        assert len(resp.json()) == 1
        assert len(resp.json()[0]["seats"]) == 6


class TestTripStatus:
    @pytest.mark.asyncio
    async def test_start_and_complete(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"], reserved_seats=2)
        booking = await factory.booking(
            people["staff"], van, status=BookingStatus.APPROVED, passenger_count=2, shared_trip=trip
        )
        await login(client, "nomsa")
        url = f"/api/shared-trips/{trip.id}/status"

        resp = await client.put(url, json={"status": "in_progress"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "in_progress"
        assert (await factory.reload(VehicleModel, van.id)).status == VehicleStatus.IN_USE
        row = await factory.reload(BookingModel, booking.id)
        assert row.status == BookingStatus.IN_PROGRESS

        resp = await client.put(url, json={"status": "completed"})
        assert resp.status_code == 200
        assert (await factory.reload(VehicleModel, van.id)).status == VehicleStatus.AVAILABLE
        row = await factory.reload(BookingModel, booking.id)
        assert row.status == BookingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_open_cannot_complete(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"])
        await login(client, "nomsa")
        resp = await client.put(
            f"/api/shared-trips/{trip.id}/status", json={"status": "completed"}
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_cancel_cancels_bookings(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"], reserved_seats=2)
        booking = await factory.booking(
            people["staff"], van, status=BookingStatus.APPROVED, passenger_count=2, shared_trip=trip
        )
        await login(client, "nomsa")
        resp = await client.put(
            f"/api/shared-trips/{trip.id}/status", json={"status": "cancelled"}
        )
        assert resp.status_code == 200
        assert resp.json()["reserved_seats"] == 0
        row = await factory.reload(BookingModel, booking.id)
        assert row.status == BookingStatus.CANCELLED
        assert row.cancellation_reason == "Shared trip cancelled"

    @pytest.mark.asyncio
    async def test_passenger_cannot_start(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"])
        await login(client, "lerato")
        resp = await client.put(
            f"/api/shared-trips/{trip.id}/status", json={"status": "in_progress"}
        )
        assert resp.status_code == 403


class TestTripBookingLifecycle:
    """Status changes on a joined booking keep the trip's seat total honest."""

    @pytest.mark.asyncio
    async def test_reopen_refused_when_seats_were_taken(
        self, make_client, factory, session_factory, people, login
    ):
        van = await factory.vehicle(capacity=7)
        trip = await factory.trip(van, people["approver"])
        await factory.user("musa")
        first, second, approver = make_client(), make_client(), make_client()
        await login(first, "lerato")
        await login(second, "musa")
        await login(approver, "nomsa")
        url = f"/api/shared-trips/{trip.id}/join"

        resp = await first.post(url, json={**JOIN_BODY, "passenger_count": 4})
        assert resp.status_code == 201
        booking_id = resp.json()["id"]

        resp = await approver.put(
            f"/api/bookings/{booking_id}/status",
            json={"status": "cancelled", "cancellation_reason": "Plans changed"},
        )
        assert resp.status_code == 200
        assert (await factory.reload(SharedTripModel, trip.id)).reserved_seats == 0

        resp = await second.post(url, json={**JOIN_BODY, "passenger_count": 4})
        assert resp.status_code == 201

        resp = await approver.put(
            f"/api/bookings/{booking_id}/status", json={"status": "approved"}
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Only 3 seats available"

        row = await factory.reload(BookingModel, booking_id)
        assert row.status == BookingStatus.CANCELLED
        trip_row = await factory.reload(SharedTripModel, trip.id)
        assert trip_row.reserved_seats == 4
        assert await live_seats(session_factory, trip.id) == 4

    @pytest.mark.asyncio
    async def test_reopen_reclaims_seats_when_they_fit(
        self, make_client, factory, session_factory, people, login
    ):
        van = await factory.vehicle(capacity=6)
        trip = await factory.trip(van, people["approver"])
        passenger, approver = make_client(), make_client()
        await login(passenger, "lerato")
        await login(approver, "nomsa")

        resp = await passenger.post(
            f"/api/shared-trips/{trip.id}/join", json={**JOIN_BODY, "passenger_count": 6}
        )
        booking_id = resp.json()["id"]
        await approver.put(
            f"/api/bookings/{booking_id}/status",
            json={"status": "cancelled", "cancellation_reason": "Plans changed"},
        )

        resp = await approver.put(
            f"/api/bookings/{booking_id}/status", json={"status": "approved"}
        )
        assert resp.status_code == 200
        assert resp.json()["cancellation_reason"] is None
        row = await factory.reload(SharedTripModel, trip.id)
        assert row.reserved_seats == 6
        assert row.status == SharedTripStatus.FULL
        assert await live_seats(session_factory, trip.id) == 6

    @pytest.mark.asyncio
    async def test_cancel_reopens_full_trip(
        self, make_client, factory, session_factory, people, login
    ):
        van = await factory.vehicle(capacity=7)
        trip = await factory.trip(van, people["approver"])
        await factory.user("musa")
        first, second, approver = make_client(), make_client(), make_client()
        await login(first, "lerato")
        await login(second, "musa")
        await login(approver, "nomsa")
        url = f"/api/shared-trips/{trip.id}/join"

        resp = await first.post(url, json={**JOIN_BODY, "passenger_count": 7})
        booking_id = resp.json()["id"]
        assert (await factory.reload(SharedTripModel, trip.id)).status == SharedTripStatus.FULL

        resp = await approver.put(
            f"/api/bookings/{booking_id}/status",
            json={"status": "cancelled", "cancellation_reason": "Plans changed"},
        )
        assert resp.status_code == 200
        row = await factory.reload(SharedTripModel, trip.id)
        assert row.status == SharedTripStatus.OPEN
        assert row.reserved_seats == 0

        resp = await second.post(url, json={**JOIN_BODY, "passenger_count": 2})
        assert resp.status_code == 201
        row = await factory.reload(SharedTripModel, trip.id)
        assert row.reserved_seats == 2
        assert await live_seats(session_factory, trip.id) == 2

    @pytest.mark.asyncio
    async def test_reject_leaves_cache_equal_to_live_total(
        self, client, factory, session_factory, people, login
    ):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"], reserved_seats=99)
        booking = await factory.booking(
            people["staff"],
            van,
            status=BookingStatus.APPROVED,
            approver=people["approver"],
            passenger_count=3,
            shared_trip=trip,
        )
        await login(client, "nomsa")

        resp = await client.put(
            f"/api/bookings/{booking.id}/status", json={"status": "rejected"}
        )
        assert resp.status_code == 200
        row = await factory.reload(SharedTripModel, trip.id)
        assert row.reserved_seats == await live_seats(session_factory, trip.id)

    @pytest.mark.asyncio
    async def test_reopen_on_cancelled_trip_refused(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"], status=SharedTripStatus.CANCELLED)
        booking = await factory.booking(
            people["staff"],
            van,
            status=BookingStatus.CANCELLED,
            approver=people["approver"],
            passenger_count=2,
            shared_trip=trip,
        )
        await login(client, "nomsa")

        resp = await client.put(
            f"/api/bookings/{booking.id}/status", json={"status": "approved"}
        )
        assert resp.status_code == 400
        assert "only open trips can take back a booking" in resp.json()["message"]
        row = await factory.reload(SharedTripModel, trip.id)
        assert row.reserved_seats == 0


class TestDeleteTrip:
    @pytest.mark.asyncio
    async def test_delete_cascades_to_bookings(
        self, client, factory, people, login, session_factory
    ):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"], reserved_seats=3)
        musa = await factory.user("musa")
        for user, seats in ((people["staff"], 1), (musa, 2)):
            await factory.booking(
                user, van, status=BookingStatus.APPROVED, passenger_count=seats, shared_trip=trip
            )
        await login(client, "nomsa")

        resp = await client.delete(f"/api/shared-trips/{trip.id}")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Shared trip deleted"}
        assert await count_bookings(session_factory, trip.id) == 0
        assert await factory.reload(SharedTripModel, trip.id) is None

    @pytest.mark.asyncio
    async def test_driver_approver_cannot_delete(
        self, client, factory, people, login, session_factory
    ):
        await factory.user("sipho", is_approver=True, is_driver=True)
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"])
        await factory.booking(
            people["staff"], van, status=BookingStatus.APPROVED, shared_trip=trip
        )
        await login(client, "sipho")

        resp = await client.delete(f"/api/shared-trips/{trip.id}")
        assert resp.status_code == 403
        assert resp.json() == {"message": "Drivers cannot delete shared trips"}
        assert await count_bookings(session_factory, trip.id) == 1

    @pytest.mark.asyncio
    async def test_staff_cannot_delete(self, client, factory, people, login):
        van = await factory.vehicle(capacity=8)
        trip = await factory.trip(van, people["approver"])
        await login(client, "lerato")
        resp = await client.delete(f"/api/shared-trips/{trip.id}")
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_missing(self, client, people, login):
        await login(client, "nomsa")
        resp = await client.delete("/api/shared-trips/999")
        assert resp.status_code == 404
