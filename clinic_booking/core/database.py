"""Async database engine, session factory and declarative base."""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

from clinic_booking.core.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    """FastAPI dependency yielding one session per request."""
    async with async_session() as session:
        yield session


def get_session_factory():
    """Session factory for work that outlives the request, e.g. background tasks."""
    return async_session
