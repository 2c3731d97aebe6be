"""
Directory endpoints
===================

GET /api/approvers -- users who can approve bookings
GET /api/drivers   -- users who can be assigned to drive
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcmd.api.dependencies import get_current_user, get_db
from fleetcmd.api.middleware import limiter
from fleetcmd.api.schemas import UserSummary
from fleetcmd.config import settings
from fleetcmd.infrastructure.models import UserModel
from fleetcmd.infrastructure.repositories import UserRepository

router = APIRouter(tags=["users"])


@router.get("/approvers", response_model=list[UserSummary], summary="List approvers")
@limiter.limit(settings.rate_limit)
async def list_approvers(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await UserRepository(db).get_approvers()


@router.get("/drivers", response_model=list[UserSummary], summary="List drivers")
@limiter.limit(settings.rate_limit)
async def list_drivers(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await UserRepository(db).get_drivers()
