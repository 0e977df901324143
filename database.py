from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
import logging
import os

import models  # noqa: F401  (registers tables on SQLModel.metadata)

logger = logging.getLogger(__name__)

# Pool settings only apply to server databases; SQLite gets the driver default.
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))
POOL_PRE_PING = os.getenv("DB_POOL_PRE_PING", "true").lower() == "true"
ECHO_SQL = os.getenv("DB_ECHO", "false").lower() == "true"
USE_NULL_POOL = os.getenv("DB_USE_NULL_POOL", "false").lower() == "true"


def normalize_database_url(url: str) -> str:
    """Ensure the asyncpg driver is used for Postgres URLs."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    url = normalize_database_url(url)
    engine_kwargs = {"echo": ECHO_SQL, "future": True}

    if url.startswith("sqlite"):
        pass
    elif USE_NULL_POOL:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_pre_ping"] = POOL_PRE_PING
        engine_kwargs["pool_recycle"] = POOL_RECYCLE
        engine_kwargs["pool_size"] = POOL_SIZE
        engine_kwargs["max_overflow"] = MAX_OVERFLOW
        engine_kwargs["pool_timeout"] = POOL_TIMEOUT

    logger.info(f"[Database] engine for {url.split(':', 1)[0]} (pool={engine_kwargs.get('pool_size', 'default')})")
    return create_async_engine(url, **engine_kwargs)


def session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine):
    async with engine.begin() as conn:
        # This creates tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


# Database connection pool health check
async def check_db_health(engine: AsyncEngine) -> dict:
    """
    Check database connection pool health.
    Returns pool statistics for monitoring.
    """
    pool = engine.pool
    return {
        "pool_size": getattr(pool, "size", lambda: 0)(),
        "checked_in": getattr(pool, "checkedin", lambda: 0)(),
        "checked_out": getattr(pool, "checkedout", lambda: 0)(),
        "overflow": getattr(pool, "overflow", lambda: 0)(),
        "pool_class": pool.__class__.__name__,
    }
