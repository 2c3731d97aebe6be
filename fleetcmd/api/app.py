"""
FastAPI application factory.

* Registers routes for auth, bookings, shared trips, the user directory
  and admin under ``/api``.
* Translates domain errors into ``{"message": ...}`` responses; a
  superseded session gets the 440 body and loses its cookie.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fleetcmd.api.middleware import limiter
from fleetcmd.api.routes import admin, auth, bookings, shared_trips, users
from fleetcmd.api.schemas import ErrorResponse, SessionInvalidatedResponse
from fleetcmd.config import settings
from fleetcmd.domain.errors import FleetError, SessionInvalidated

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    440: {"model": SessionInvalidatedResponse, "description": "Logged in elsewhere"},
}


async def fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    if isinstance(exc, SessionInvalidated):
        resp = JSONResponse(
            status_code=exc.status_code,
            content={
                "message": exc.message,
                "reason": exc.reason,
                "notification": exc.notification,
            },
        )
        resp.delete_cookie(settings.session_cookie_name)
        return resp
    if exc.status_code >= 500:
        logger.error("Unhandled domain error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Fleet Booking API",
        description=(
            "Corporate vehicle booking: role-gated approval workflow, "
            "odometer capture, shared trips with seat allocation and a "
            "single active session per account."
        ),
        version="1.0.0",
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(FleetError, fleet_error_handler)

    # Routers
    for module in (auth, users, bookings, shared_trips, admin):
        app.include_router(module.router, prefix="/api", responses=ERROR_RESPONSES)

    return app
