"""
SQLAlchemy Async Database Configuration.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from storefront.config import get_settings
from storefront.models import Base  # Import from models package

settings = get_settings()


def _engine_options(url: str) -> dict:
    # SQLite (local dev, tests) does not accept the pool sizing arguments
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {
        "pool_size": 20,
        "max_overflow": 40,
        "pool_timeout": 10,
        "pool_recycle": 900,
        "pool_pre_ping": True,
    }


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    With the driver's deferred BEGIN, two writers can each hold a read lock
    and wait on the other forever; SQLite then fails one with "database is
    locked" instead of letting the busy timeout queue it.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(url, echo=echo, future=True, **_engine_options(url))
    if url.startswith("sqlite"):
        _use_immediate_transactions(engine)
    return engine


engine = create_engine_for(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """Dependency for FastAPI routes to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
