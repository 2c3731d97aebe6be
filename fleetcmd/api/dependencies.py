"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcmd.config import settings
from fleetcmd.infrastructure.database import async_session_factory
from fleetcmd.infrastructure.models import UserModel
from fleetcmd.services.auth import AuthService
from fleetcmd.services.notifications import NotificationSink, notifier
from fleetcmd.services.shared_trips import LockFactory, trip_seat_lock


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_notifier() -> NotificationSink:
    return notifier


def get_seat_lock() -> LockFactory:
    return trip_seat_lock


def get_session_id(request: Request) -> Optional[str]:
    return request.cookies.get(settings.session_cookie_name)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> UserModel:
    """
    Session guard.  Runs before every authenticated handler; raises
    ``AuthenticationRequired`` (401) or ``SessionInvalidated`` (440) so the
    handler is never reached with a stale session.
    """
    return await AuthService(db).authenticate(get_session_id(request))
