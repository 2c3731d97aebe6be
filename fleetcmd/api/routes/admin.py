"""
Admin / observability endpoints
===============================

GET /api/admin/health -- liveness check, no session required
"""

from fastapi import APIRouter

from fleetcmd.api.schemas import HealthResponse

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
