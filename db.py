# db.py
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from config import settings
from config.database import engine_options
from db_base import Base


# ---------- Engine & Session (async) ----------

engine = create_async_engine(
    settings.DATABASE_URL,
    future=True,
    **engine_options(settings.DATABASE_URL),
)

# Objects stay readable after commit; the store layer commits per operation
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """
    Create tenants, client_businesses, users, refresh_tokens and
    backup_codes from ORM metadata. Local development only; deployed
    databases are migrated with Alembic.
    """
    import db_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; rolled back on close if a handler raised mid-write."""
    async with AsyncSessionLocal() as session:
        yield session
