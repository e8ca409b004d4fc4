"""Database connection and session management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def engine_options(url: str) -> dict[str, Any]:
    """Pool options for the given URL; SQLite drivers do not take pool sizing."""
    if make_url(url).get_backend_name() == "sqlite":
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


# Create async engine
engine = create_async_engine(settings.db_url, **engine_options(settings.db_url))

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# Base class for models
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


async def init_db(db_engine: AsyncEngine | None = None) -> None:
    """Initialize database (create tables if needed)."""
    db_engine = db_engine or engine
    try:
        async with db_engine.begin() as conn:
            # Import all models here to ensure they're registered
            from app.models import business, deletion, tenant  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created/verified")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("Database engine disposed")


def inspect_live_schema(sync_conn: Connection) -> dict[str, set[str]]:
    """Table name -> column names, as deployed (run via ``run_sync``)."""
    inspector = inspect(sync_conn)
    return {
        table: {column["name"] for column in inspector.get_columns(table)}
        for table in inspector.get_table_names()
    }


async def begin_read_snapshot(session: AsyncSession) -> None:
    """
    Pin the session's transaction to a consistent read-only snapshot.

    Must be the first statement of the transaction. PostgreSQL gets
    REPEATABLE READ READ ONLY; SQLite transactions are already serializable.
    """
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        await session.execute(text("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY"))


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Dependency returning the session factory used by the deletion services.

    Services open one short transaction per operation (and the orchestrator
    one per step), so they take the factory rather than a request session.
    """
    return AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting a request-scoped database session.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            if session.in_transaction():
                await session.commit()
        except Exception:
            if session.in_transaction():
                await session.rollback()
            raise
        finally:
            await session.close()
