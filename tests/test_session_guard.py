"""
Single-active-session tests.

A second login for the same account supersedes the first: the older
session is rejected with 440 on its next request, the newer one works.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from fleetcmd.config import settings
from fleetcmd.infrastructure.models import SessionModel, UserModel


class TestRegisterAndLogin:
    @pytest.mark.asyncio
    async def test_register_signs_in(self, client):
        resp = await client.post(
            "/api/register",
            json={
                "username": "lerato",
                "password": "secret123",
                "full_name": "Lerato Petersen",
                "email": "lerato@example.com",
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["username"] == "lerato"
        assert "password_hash" not in body
        assert settings.session_cookie_name in resp.cookies

        me = await client.get("/api/user")
        assert me.status_code == 200
        assert me.json()["id"] == body["id"]

    @pytest.mark.asyncio
    async def test_duplicate_username(self, client, factory):
        await factory.user("lerato")
        resp = await client.post(
            "/api/register",
            json={"username": "lerato", "password": "secret123", "full_name": "L"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"message": "Username already exists"}

    @pytest.mark.asyncio
    async def test_bad_password(self, client, factory):
        await factory.user("musa")
        resp = await client.post(
            "/api/login", json={"username": "musa", "password": "nope"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_unauthenticated(self, client):
        resp = await client.get("/api/user")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Authentication required"}


class TestSingleSession:
    @pytest.mark.asyncio
    async def test_second_login_invalidates_first(self, make_client, factory, login):
        await factory.user("musa")
        first, second = make_client(), make_client()

        await login(first, "musa")
        assert (await first.get("/api/user")).status_code == 200

        await login(second, "musa")

        stale = await first.get("/api/user")
        assert stale.status_code == 440
        body = stale.json()
        assert body["message"] == "Session expired"
        assert body["reason"] == "logged_in_elsewhere"
        assert "another location" in body["notification"]

        fresh = await second.get("/api/user")
        assert fresh.status_code == 200
        assert fresh.json()["username"] == "musa"

    @pytest.mark.asyncio
    async def test_stale_session_is_destroyed(
        self, make_client, factory, login, session_factory
    ):
        await factory.user("musa")
        first, second = make_client(), make_client()
        resp = await login(first, "musa")
        stale_id = resp.cookies[settings.session_cookie_name]
        await login(second, "musa")

        assert (await first.get("/api/user")).status_code == 440
        async with session_factory() as s:
            assert await s.get(SessionModel, stale_id) is None

    @pytest.mark.asyncio
    async def test_stale_session_never_reaches_handlers(
        self, make_client, factory, login, notifier
    ):
        await factory.user("musa")
        vehicle = await factory.vehicle()
        first, second = make_client(), make_client()
        await login(first, "musa")
        await login(second, "musa")

        resp = await first.post(
            "/api/bookings",
            json={
                "vehicle_id": vehicle.id,
                "start_time": "2026-11-02T08:00:00Z",
                "end_time": "2026-11-02T17:00:00Z",
                "purpose": "Client meeting",
            },
        )
        assert resp.status_code == 440
        listing = await second.get("/api/bookings")
        assert listing.json() == []

    @pytest.mark.asyncio
    async def test_logout_clears_current_session(
        self, client, factory, login, session_factory
    ):
        user = await factory.user("musa")
        await login(client, "musa")

        resp = await client.post("/api/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out"}

        async with session_factory() as s:
            row = await s.get(UserModel, user.id)
            assert row.current_session_id is None
        assert (await client.get("/api/user")).status_code == 401

    @pytest.mark.asyncio
    async def test_expired_session(self, client, factory, login, session_factory):
        await factory.user("musa")
        resp = await login(client, "musa")
        sid = resp.cookies[settings.session_cookie_name]

        async with session_factory() as s:
            await s.execute(
                update(SessionModel)
                .where(SessionModel.id == sid)
                .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
            )
            await s.commit()

        resp = await client.get("/api/user")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Session expired"}
