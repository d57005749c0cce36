"""
Async SQLAlchemy engine + session factory for TiDB (MySQL-protocol).

TiDB is wire-compatible with MySQL 5.7, so we use the aiomysql driver.
The engine is created once at startup and reused across all requests.
Feed retrieval fans out several queries at once, and an AsyncSession
cannot run statements concurrently, so callers open one session per query
from AsyncSessionLocal.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from contract_feed.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.tidb_url,
    pool_pre_ping=True,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_db() -> None:
    """Create all tables if they don't exist (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")
