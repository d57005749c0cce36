"""
Topic interest profile builder.

A user's profile is built from two signals:

  Baseline  — average contract conversion score per topic over the user's
              most recently interacted contracts (top 100 topics drawn from
              the last 50 contracts). Overwrites the whole profile.
  Follows   — +1 per topic (group) the user is a member of, added on top of
              whatever the profile holds at that point.

Both fetches run concurrently per batch of 500 users. Baselines are applied
first and the follow bonus second, so a topic only known through a follow
starts from zero.

When the store is empty (first build in this process) every user with an
interaction inside the active window is built as well, warming the cache.

ensure_profile() is the read-path entry point: at most one build per user is
in flight at a time, and concurrent callers share it.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contract_feed.config import settings
from contract_feed.database import utcnow
from contract_feed.models import Contract, GroupContract, GroupMember, UserContractInteraction
from contract_feed.ranking.interest_store import InterestProfile, InterestStore
from contract_feed.telemetry import INTEREST_BUILD_FAILURES_TOTAL, INTEREST_CACHE_USERS

logger = logging.getLogger(__name__)

FOLLOW_BONUS = 1.0


# ─────────────────────────── Queries ──────────────────────────────────────

async def fetch_topic_scores(
    session: AsyncSession,
    user_id: str,
    contract_limit: int,
    topic_limit: int,
) -> InterestProfile:
    """Average conversion score per topic over the user's latest contracts."""
    last_seen = func.max(UserContractInteraction.created_time)
    recent = (
        select(UserContractInteraction.contract_id)
        .where(UserContractInteraction.user_id == user_id)
        .group_by(UserContractInteraction.contract_id)
        .order_by(last_seen.desc())
        .limit(contract_limit)
        .subquery()
    )
    avg_score = func.avg(Contract.conversion_score).label("avg_conversion_score")
    stmt = (
        select(GroupContract.group_id, avg_score)
        .select_from(GroupContract)
        .join(recent, recent.c.contract_id == GroupContract.contract_id)
        .join(Contract, Contract.id == GroupContract.contract_id)
        .group_by(GroupContract.group_id)
        .order_by(avg_score.desc())
        .limit(topic_limit)
    )
    rows = await session.execute(stmt)
    return {group_id: float(score or 0.0) for group_id, score in rows.all()}


async def fetch_group_memberships(
    session: AsyncSession, user_ids: list[str]
) -> list[tuple[str, str]]:
    """(member_id, group_id) pairs for a batch of users."""
    rows = await session.execute(
        select(GroupMember.member_id, GroupMember.group_id).where(
            GroupMember.member_id.in_(user_ids)
        )
    )
    return [(member_id, group_id) for member_id, group_id in rows.all()]


async def fetch_recently_active_user_ids(
    session: AsyncSession, window_days: int
) -> list[str]:
    cutoff = utcnow() - timedelta(days=window_days)
    rows = await session.execute(
        select(UserContractInteraction.user_id)
        .where(UserContractInteraction.created_time > cutoff)
        .distinct()
    )
    return list(rows.scalars().all())


# ─────────────────────────── Builder ──────────────────────────────────────

class InterestProfileBuilder:
    def __init__(
        self,
        store: InterestStore,
        session_factory: async_sessionmaker,
        batch_size: int = settings.interest_batch_size,
        contract_limit: int = settings.interest_contract_limit,
        topic_limit: int = settings.interest_topic_limit,
        active_window_days: int = settings.interest_active_window_days,
    ) -> None:
        self.store = store
        self._session_factory = session_factory
        self._batch_size = batch_size
        self._contract_limit = contract_limit
        self._topic_limit = topic_limit
        self._active_window_days = active_window_days

        # Guards the check-then-start step of ensure_profile / warm.
        self._lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Task] = {}
        self._warming: Optional[asyncio.Task] = None

    # ── Read path ─────────────────────────────────────────────────────────

    async def ensure_profile(self, user_id: str) -> InterestProfile:
        """Return the cached profile, building it once if it is missing."""
        while True:
            profile = await self.store.get(user_id)
            if profile is not None:
                return profile

            # Miss: re-check under the lock, then join or start a build
            async with self._lock:
                profile = await self.store.get(user_id)
                if profile is not None:
                    return profile
                task = self._inflight.get(user_id)
                joined_warmup = task is None and self._warming is not None
                if joined_warmup:
                    task = self._warming
                elif task is None:
                    task = await self._start_build(user_id)

            # Shielded so one cancelled request doesn't cancel a shared build
            await asyncio.shield(task)
            if not joined_warmup:
                return await self.store.get(user_id) or {}
            # The warm-up may not have covered this user; check again.

    async def warm(self) -> None:
        """Populate the cache for recently active users if it is empty."""
        async with self._lock:
            task = self._warming
            if task is None:
                task = await self._start_build(None)
        await asyncio.shield(task)

    async def _start_build(self, user_id: Optional[str]) -> asyncio.Task:
        cold = await self.store.size() == 0
        task = asyncio.create_task(self.build_interests(user_id))
        if user_id is not None:
            self._inflight[user_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(user_id, None))
        if cold:
            self._warming = task
            task.add_done_callback(self._clear_warming)
        return task

    def _clear_warming(self, task: asyncio.Task) -> None:
        if self._warming is task:
            self._warming = None

    # ── Build ─────────────────────────────────────────────────────────────

    async def build_interests(self, user_id: Optional[str] = None) -> None:
        logger.info("Starting user topic interests cache build")
        user_ids = [user_id] if user_id else []

        if await self.store.size() == 0:
            async with self._session_factory() as session:
                user_ids.extend(
                    await fetch_recently_active_user_ids(
                        session, self._active_window_days
                    )
                )
        user_ids = list(dict.fromkeys(user_ids))
        logger.info("Building topic interests cache for %d users", len(user_ids))

        for start in range(0, len(user_ids), self._batch_size):
            batch = user_ids[start:start + self._batch_size]
            await self._build_batch(batch)
            cached = await self.store.size()
            INTEREST_CACHE_USERS.set(cached)
            logger.info("Built topic interests cache for users: %d", cached)

        logger.info("Built user topic interests cache")

    async def _build_batch(self, user_ids: list[str]) -> None:
        baselines, memberships = await asyncio.gather(
            asyncio.gather(*(self._fetch_baseline(uid) for uid in user_ids)),
            self._fetch_memberships(user_ids),
        )
        for uid, profile in zip(user_ids, baselines):
            if profile is not None:
                await self.store.set(uid, profile)
        for member_id, group_id in memberships:
            await self.store.increment(member_id, group_id, FOLLOW_BONUS)

    async def _fetch_baseline(self, user_id: str) -> Optional[InterestProfile]:
        try:
            async with self._session_factory() as session:
                return await fetch_topic_scores(
                    session, user_id, self._contract_limit, self._topic_limit
                )
        except Exception:
            # Scoped to this user for this cycle; siblings in the batch continue.
            logger.exception("Topic interest fetch failed for user %s", user_id)
            INTEREST_BUILD_FAILURES_TOTAL.labels(step="baseline").inc()
            return None

    async def _fetch_memberships(self, user_ids: list[str]) -> list[tuple[str, str]]:
        try:
            async with self._session_factory() as session:
                return await fetch_group_memberships(session, user_ids)
        except Exception:
            logger.exception(
                "Group membership fetch failed for batch of %d users", len(user_ids)
            )
            INTEREST_BUILD_FAILURES_TOTAL.labels(step="follows").inc()
            return []
