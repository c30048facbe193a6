"""Async engine and request-scoped sessions for the API."""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from publisher.settings import settings


def get_async_engine(url: str | None = None, **kwargs):
    """Engine for ``url`` (default ``DATABASE_URL``); ``kwargs`` override the pool defaults."""
    effective_url = make_url(url or settings.DATABASE_URL)
    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("echo", settings.DB_ECHO)
    # SQLite pools take no size
    if effective_url.get_backend_name() != "sqlite":
        kwargs.setdefault("pool_size", settings.DB_POOL_SIZE)
    return create_async_engine(effective_url, **kwargs)


async_engine = get_async_engine()
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine, class_=AsyncSession, expire_on_commit=False
)


async def get_async_db():
    async with AsyncSessionLocal() as session:
        yield session
