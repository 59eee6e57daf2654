"""Database session factory setup."""

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory for the wallet ledger.

    Args:
        db_url: Database URL (postgresql+psycopg://... in production,
            sqlite+aiosqlite://... for local runs)
        pool_size: Maximum number of connections in the pool (default: 20)

    Returns:
        Async session factory for creating database sessions
    """
    engine_kwargs: dict = {"pool_pre_ping": True, "echo": False}
    if not db_url.startswith("sqlite"):
        # In-memory SQLite pools reject sizing arguments
        engine_kwargs.update(pool_size=pool_size, max_overflow=0)

    engine = create_async_engine(db_url, **engine_kwargs)

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def dialect_insert(session: AsyncSession, table):
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL and SQLite both implement ``on_conflict_do_nothing`` /
    ``on_conflict_do_update`` but expose them through dialect-specific
    ``insert`` functions.

    Args:
        session: Session whose bound engine decides the dialect
        table: SQLModel table class to insert into

    Returns:
        Dialect-specific Insert construct
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)
