"""
Feed engine — one personalized feed request end to end.

  Stage 1 │ Interest profile (cached; built once per user on a miss)
  Stage 2 │ Exclusions      (private-user block lists + caller ignore list)
  Stage 3 │ Retrieval       (six shapes in parallel, one session each)
  Stage 4 │ Merge           (rank, dedup, attribute, ads, repost attachments)

Any failing shape fails the whole request; there is no partial feed.
"""
import asyncio
import logging
import time
from typing import Iterable

from opentelemetry import trace
from sqlalchemy import Select
from sqlalchemy.ext.asyncio import async_sessionmaker

from contract_feed.config import settings
from contract_feed.database import utcnow
from contract_feed.models import PrivateUser
from contract_feed.ranking.candidates import (
    FeedWindow,
    ScoredCandidate,
    Shape,
    discovery_statement,
    fetch_reposts,
    fetch_topical,
    followed_statement,
    repost_statement,
    sponsored_statement,
)
from contract_feed.ranking.filters import ExclusionSet
from contract_feed.ranking.interests import InterestProfileBuilder
from contract_feed.ranking.merge import FeedResult, merge_feed
from contract_feed.telemetry import FEED_CANDIDATES_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class FeedEngine:
    def __init__(
        self,
        builder: InterestProfileBuilder,
        session_factory: async_sessionmaker,
        ad_slate_size: int = settings.ad_slate_size,
        repost_window_days: int = settings.repost_window_days,
    ) -> None:
        self.builder = builder
        self._session_factory = session_factory
        self._ad_slate_size = ad_slate_size
        self._repost_window_days = repost_window_days

    async def get_feed(
        self,
        user_id: str,
        limit: int,
        offset: int = 0,
        ignore_contract_ids: Iterable[str] = (),
    ) -> FeedResult:
        with tracer.start_as_current_span("build_feed") as span:
            span.set_attribute("user.id", user_id)

            with tracer.start_as_current_span("stage1_interests"):
                profile = await self.builder.ensure_profile(user_id)
            span.set_attribute("interests.topics", len(profile))

            with tracer.start_as_current_span("stage2_exclusions"):
                async with self._session_factory() as session:
                    private_user = await session.get(PrivateUser, user_id)
                exclusions = ExclusionSet.for_user(
                    user_id, private_user, ignore_contract_ids
                )

            window = FeedWindow(
                profile=profile,
                exclusions=exclusions,
                now=utcnow(),
                limit=limit,
                offset=offset,
            )

            with tracer.start_as_current_span("stage3_retrieval"):
                start_time = time.perf_counter()
                results = await self.retrieve(window)
                elapsed = time.perf_counter() - start_time
            logger.info(
                "Feed queries completed in %.3fs (user=%s, ignored=%d)",
                elapsed, user_id, len(exclusions.ignore_contract_ids),
            )
            for shape, candidates in results.items():
                FEED_CANDIDATES_TOTAL.labels(shape=shape.value).inc(len(candidates))
                span.set_attribute(f"candidates.{shape.value}", len(candidates))

            with tracer.start_as_current_span("stage4_merge"):
                feed = merge_feed(results)
            span.set_attribute("feed.contracts", len(feed.contracts))
            span.set_attribute("feed.ads", len(feed.ads))
            return feed

    async def retrieve(self, window: FeedWindow) -> dict[Shape, list[ScoredCandidate]]:
        """Run every shape concurrently; the first failure propagates."""
        topical: dict[Shape, Select] = {
            shape: discovery_statement(window, shape)
            for shape in (Shape.CONVERSION, Shape.IMPORTANCE, Shape.FRESHNESS)
        }
        topical[Shape.FOLLOWED] = followed_statement(window)
        topical[Shape.SPONSORED] = sponsored_statement(window, self._ad_slate_size)

        shapes = [*topical, Shape.REPOST]
        fetched = await asyncio.gather(
            *(self._run_topical(stmt, shape) for shape, stmt in topical.items()),
            self._run_reposts(window),
        )
        return dict(zip(shapes, fetched))

    async def _run_topical(self, stmt: Select, shape: Shape) -> list[ScoredCandidate]:
        async with self._session_factory() as session:
            return await fetch_topical(session, stmt, shape)

    async def _run_reposts(self, window: FeedWindow) -> list[ScoredCandidate]:
        stmt = repost_statement(window, self._repost_window_days)
        async with self._session_factory() as session:
            return await fetch_reposts(session, stmt, window.now)
