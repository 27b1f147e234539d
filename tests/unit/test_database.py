from sqlalchemy.pool import NullPool, StaticPool
from core.database import build_engine, build_session_factory


def test_sqlite_engine_shares_one_connection():
    engine = build_engine("sqlite+aiosqlite://", echo=False)
    assert isinstance(engine.sync_engine.pool, StaticPool)


def test_server_engine_uses_null_pool():
    engine = build_engine("postgresql+asyncpg://user:pw@db:5432/trade_intel", echo=False)
    assert isinstance(engine.sync_engine.pool, NullPool)


def test_session_factory_keeps_objects_loaded_after_commit():
    factory = build_session_factory(build_engine("sqlite+aiosqlite://", echo=False))
    assert factory.kw["expire_on_commit"] is False
    assert factory.kw["autoflush"] is False
