import os

# Must be set before contract_feed.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("INTEREST_WARM_ON_STARTUP", "false")

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from contract_feed.database import Base, utcnow  # noqa: E402
from contract_feed.models import Contract, GroupContract  # noqa: E402
from contract_feed.ranking.interest_store import MemoryInterestStore  # noqa: E402
from contract_feed.ranking.interests import InterestProfileBuilder  # noqa: E402


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'feed.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def seed(session_factory):
    async def _seed(*objects):
        async with session_factory() as session:
            session.add_all(objects)
            await session.commit()

    return _seed


@pytest.fixture
def builder(session_factory):
    return InterestProfileBuilder(MemoryInterestStore(), session_factory)


def make_contract(contract_id: str, group_id: str = "g1", **overrides):
    """An open public contract plus its topic membership row."""
    fields = dict(
        id=contract_id,
        creator_id="creator",
        question=f"Will {contract_id} resolve YES?",
        visibility="public",
        close_time=utcnow() + timedelta(days=7),
        conversion_score=1.0,
        importance_score=1.0,
        freshness_score=1.0,
        created_time=utcnow() - timedelta(days=1),
    )
    fields.update(overrides)
    return [Contract(**fields), GroupContract(group_id=group_id, contract_id=contract_id)]
