"""
Authentication and the single-session guard.

Every account has at most one authorised session: ``users.current_session_id``.
Login and registration overwrite it unconditionally (last login wins), so
any older session of the same account is rejected on its next request with
``SessionInvalidated`` and its server-side row is removed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from fleetcmd.config import settings
from fleetcmd.domain.enums import DEFAULT_PERMISSIONS, Role
from fleetcmd.domain.errors import (
    AuthenticationRequired,
    SessionInvalidated,
    ValidationError,
)
from fleetcmd.infrastructure.models import UserModel
from fleetcmd.infrastructure.repositories import SessionRepository, UserRepository

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return check_password_hash(hashed, password)
    except ValueError:
        # unknown hash method stored for this account
        return False


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserRepository(db)
        self.sessions = SessionRepository(db)

    async def _open_session(self, user: UserModel) -> str:
        session_id = new_session_id()
        expires_at = datetime.now(timezone.utc) + timedelta(
            hours=settings.session_ttl_hours
        )
        await self.sessions.create(session_id, user.id, expires_at)
        previous = user.current_session_id
        await self.users.set_current_session(user, session_id)
        if previous and previous != session_id:
            logger.info(
                "User %s signed in again; session %s... superseded",
                user.id,
                previous[:8],
            )
        return session_id

    async def register(
        self,
        *,
        username: str,
        password: str,
        full_name: str,
        email: Optional[str] = None,
        department: Optional[str] = None,
    ) -> tuple[UserModel, str]:
        if await self.users.get_by_username(username):
            raise ValidationError("Username already exists")
        user = UserModel(
            username=username,
            password_hash=hash_password(password),
            full_name=full_name,
            email=email,
            department=department,
            role=Role.CUSTOMER,
            permissions=list(DEFAULT_PERMISSIONS),
        )
        try:
            await self.users.create(user)
        except IntegrityError:
            raise ValidationError("Username already exists") from None
        session_id = await self._open_session(user)
        logger.info("Registered user %s (%s)", user.id, username)
        return user, session_id

    async def login(self, username: str, password: str) -> tuple[UserModel, str]:
        user = await self.users.get_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationRequired("Invalid username or password")
        session_id = await self._open_session(user)
        logger.info("User %s logged in", user.id)
        return user, session_id

    async def logout(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        row = await self.sessions.get_by_id(session_id)
        if row is None:
            return
        user = await self.users.get_by_id(row.user_id)
        await self.sessions.delete(session_id)
        if user is not None and user.current_session_id == session_id:
            await self.users.set_current_session(user, None)
        logger.info("User %s logged out", row.user_id)

    async def authenticate(self, session_id: Optional[str]) -> UserModel:
        """
        Resolve the request's session to its user, enforcing the
        single-session policy.

        Raises ``AuthenticationRequired`` for a missing, unknown or expired
        session and ``SessionInvalidated`` when the account has since
        signed in elsewhere.  The invalidation path commits the removal of
        the stale session itself because the request fails afterwards.
        """
        if not session_id:
            raise AuthenticationRequired()
        row = await self.sessions.get_by_id(session_id)
        if row is None:
            raise AuthenticationRequired()
        if _as_utc(row.expires_at) <= datetime.now(timezone.utc):
            await self.sessions.delete(session_id)
            await self.db.commit()
            raise AuthenticationRequired("Session expired")

        user = await self.users.get_by_id(row.user_id)
        if user is None:
            raise AuthenticationRequired()

        if user.current_session_id and user.current_session_id != session_id:
            await self.sessions.delete(session_id)
            await self.db.commit()
            logger.warning(
                "Rejected superseded session %s... for user %s",
                session_id[:8],
                user.id,
            )
            raise SessionInvalidated()
        return user
