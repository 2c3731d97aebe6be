"""
Authentication endpoints
========================

POST /api/register -- create an account and sign in (201)
POST /api/login    -- sign in; supersedes any other session of the account
POST /api/logout   -- end the current session
GET  /api/user     -- the signed-in user
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcmd.api.dependencies import get_current_user, get_db, get_session_id
from fleetcmd.api.middleware import limiter
from fleetcmd.api.schemas import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserResponse,
)
from fleetcmd.config import settings
from fleetcmd.infrastructure.models import UserModel
from fleetcmd.services.auth import AuthService

router = APIRouter(tags=["auth"])


def _session_response(user: UserModel, session_id: str, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=UserResponse.model_validate(user).model_dump(mode="json"),
    )
    resp.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return resp


@router.post(
    "/register",
    status_code=201,
    response_model=UserResponse,
    summary="Register a new account",
)
@limiter.limit(settings.rate_limit)
async def register(
    request: Request,
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    user, session_id = await AuthService(db).register(
        username=body.username,
        password=body.password,
        full_name=body.full_name,
        email=body.email,
        department=body.department,
    )
    return _session_response(user, session_id, 201)


@router.post("/login", response_model=UserResponse, summary="Sign in")
@limiter.limit(settings.rate_limit)
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user, session_id = await AuthService(db).login(body.username, body.password)
    return _session_response(user, session_id, 200)


@router.post("/logout", response_model=MessageResponse, summary="Sign out")
@limiter.limit(settings.rate_limit)
async def logout(request: Request, db: AsyncSession = Depends(get_db)):
    await AuthService(db).logout(get_session_id(request))
    resp = JSONResponse(content={"message": "Logged out"})
    resp.delete_cookie(settings.session_cookie_name)
    return resp


@router.get("/user", response_model=UserResponse, summary="Current user")
@limiter.limit(settings.rate_limit)
async def current_user(
    request: Request,
    user: UserModel = Depends(get_current_user),
):
    return user
