"""Database connection and session management."""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from escrowbot.config import get_settings
from escrowbot.ledger.models import Base

# Global engine and session factory
_engine = None
_session_factory = None

# An async context manager yielding a session that commits on exit
SessionScope = Callable[[], AsyncContextManager[AsyncSession]]


def configure_sqlite(engine: AsyncEngine) -> None:
    """Make SQLite behave like a transactional store with row-level guarantees.

    SQLite has no SELECT ... FOR UPDATE, so every transaction takes the write
    lock up front with BEGIN IMMEDIATE. Concurrent writers then queue on the
    busy timeout instead of failing with "database is locked" on upgrade.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let us emit BEGIN ourselves
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, normalizing plain sqlite URLs to aiosqlite."""
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")

    engine = create_async_engine(db_url, echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        configure_sqlite(engine)
    return engine


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for_url(
            settings.database_url,
            echo=settings.debug and not settings.is_production,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def session_scope(session_factory: async_sessionmaker[AsyncSession]):
    """Build a get_db-style context manager bound to a specific session factory."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session context manager.

    Everything done inside one ``get_db()`` block commits as one unit or
    rolls back entirely.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
