"""
Database engine and session factory with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    SQLite URLs share one connection so an in-memory database is visible
    to every session; server databases use NullPool.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("poolclass", StaticPool)
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("poolclass", NullPool)
    kwargs.setdefault("echo", settings.ENVIRONMENT == "development")
    return create_async_engine(url, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Objects stay readable after commit; pipeline stages commit independently
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL)
async_session_maker = build_session_factory(engine)
