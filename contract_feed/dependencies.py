"""
Process-wide service singletons and the FastAPI dependencies exposing them.

Tests swap these out through app.dependency_overrides.
"""
from typing import Optional

from fastapi import Header

from contract_feed.database import AsyncSessionLocal
from contract_feed.ingestion.view_queue import ViewQueue
from contract_feed.ranking.engine import FeedEngine
from contract_feed.ranking.interest_store import MemoryInterestStore
from contract_feed.ranking.interests import InterestProfileBuilder

# Replaced with a RedisInterestStore at startup when configured
interest_builder = InterestProfileBuilder(MemoryInterestStore(), AsyncSessionLocal)
feed_engine = FeedEngine(interest_builder, AsyncSessionLocal)
view_queue = ViewQueue(AsyncSessionLocal)


def get_feed_engine() -> FeedEngine:
    return feed_engine


def get_view_queue() -> ViewQueue:
    return view_queue


def get_acting_user_id(
    x_user_id: Optional[str] = Header(None, description="Authenticated user id"),
) -> Optional[str]:
    """Identity asserted by the upstream auth layer; None when logged out."""
    return x_user_id
