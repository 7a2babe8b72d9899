"""Async SQLAlchemy engine and session factory.

SQLAlchemy 2.0 async mode: create_async_engine for connection pooling,
AsyncSession per unit of work. Services receive the session and own
flush/commit/rollback.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from codehub.config import settings


def create_engine(url: str, **kwargs) -> AsyncEngine:
    """Build an engine for url.

    SQLite gets foreign key enforcement switched on per connection so
    ON DELETE CASCADE behaves as on PostgreSQL. Other backends get a
    connection pool of 5 plus 15 overflow.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=settings.debug, **kwargs)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    kwargs.setdefault("pool_size", 5)
    kwargs.setdefault("max_overflow", 15)
    return create_async_engine(url, echo=settings.debug, **kwargs)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.database_url)

# Each unit of work gets its own session.
async_session_factory = create_session_factory(engine)


async def get_db():
    """Yield a session for one unit of work, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
