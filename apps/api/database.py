"""
Async database engine, session factory, and declarative base.
"""

from typing import AsyncIterator

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql.dml import Insert

from config import settings


engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        yield session


def insert_ignoring_conflicts(db: AsyncSession, table: Table) -> Insert:
    """Build an INSERT that silently skips rows violating a unique key.

    The affected row count of the executed statement is 0 when the row
    already existed and 1 when it was inserted.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite_insert(table).on_conflict_do_nothing()
    raise RuntimeError(f"Unsupported database dialect for conflict-free insert: {dialect}")
