"""
FastAPI application factory.

* Registers routes for rides, drivers and admin.
* Maps dispatch-engine errors to HTTP status codes.
* Starts / stops the background sweeper via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rideconnect.api.dependencies import get_services
from rideconnect.api.middleware import limiter
from rideconnect.api.routes import admin, drivers, rides
from rideconnect.config import settings
from rideconnect.domain.errors import (
    DriverReserved,
    InvalidTransition,
    NoCandidate,
    NotFound,
    RideConnectError,
    UserHasRides,
)
from rideconnect.infrastructure.redis_client import close_redis
from rideconnect.workers import sweeper as _sweeper

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

_STATUS_CODES = {
    NotFound: 404,
    InvalidTransition: 409,
    DriverReserved: 409,
    UserHasRides: 409,
    NoCandidate: 503,
}


async def _engine_error_handler(request: Request, exc: RideConnectError):
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400
    )
    if status_code == 409:
        logger.info("Conflict on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweeper on startup; stop on shutdown."""
    await _sweeper.start_sweeper(get_services())
    yield
    await _sweeper.stop_sweeper()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="RideConnect Dispatch API",
        description=(
            "Matches ride requests to the nearest available driver and "
            "keeps ride status, driver availability and payments "
            "consistent under concurrent requests."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RideConnectError, _engine_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
