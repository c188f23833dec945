"""FastAPI dependency injection helpers."""

from functools import lru_cache

from rideconnect.config import settings
from rideconnect.infrastructure.database import async_session_factory
from rideconnect.services.container import Services, build_services


@lru_cache
def get_services() -> Services:
    """Process-wide engine services bound to the application database."""
    return build_services(async_session_factory, settings)
