"""
Async SQLAlchemy engine and session factory.

``asyncpg`` in production, ``aiosqlite`` in tests.  Every engine
transition runs inside one ``session.begin()`` block from
``async_session_factory``; nothing relies on autocommit.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from rideconnect.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

# Rows returned from a committed transition stay readable after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the rideconnect tables."""
