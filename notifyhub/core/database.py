"""
Engine and session scopes shared by the API and the fan-out workers.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notifyhub.core.config import get_settings

settings = get_settings()


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.database_url, echo=settings.debug)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block exits cleanly, roll back and re-raise otherwise."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session scope per request."""
    async with session_scope() as session:
        yield session
