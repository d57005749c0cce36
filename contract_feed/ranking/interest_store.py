"""
Topic interest profile stores.

A profile maps topic (group) id → score for one user. Profiles are written
only by InterestProfileBuilder and read by the feed path.

  MemoryInterestStore — process-wide dict, no eviction. Profiles live for
                        the lifetime of the process.
  RedisInterestStore  — one HASH per user keyed by uti:{user_id}, plus a SET
                        of known users so empty profiles still count as cached
                        (Redis drops empty hashes).
"""
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis

InterestProfile = dict[str, float]


class InterestStore(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[InterestProfile]:
        """Return a copy of the user's profile, or None if never built."""

    @abstractmethod
    async def set(self, user_id: str, profile: InterestProfile) -> None:
        """Replace the user's whole profile."""

    @abstractmethod
    async def increment(self, user_id: str, topic_id: str, amount: float) -> None:
        """Add to one topic score, starting from zero if the topic is absent."""

    @abstractmethod
    async def size(self) -> int:
        ...

    async def has(self, user_id: str) -> bool:
        return await self.get(user_id) is not None


class MemoryInterestStore(InterestStore):
    def __init__(self) -> None:
        self._profiles: dict[str, InterestProfile] = {}

    async def get(self, user_id: str) -> Optional[InterestProfile]:
        profile = self._profiles.get(user_id)
        return dict(profile) if profile is not None else None

    async def set(self, user_id: str, profile: InterestProfile) -> None:
        self._profiles[user_id] = dict(profile)

    async def increment(self, user_id: str, topic_id: str, amount: float) -> None:
        profile = self._profiles.setdefault(user_id, {})
        profile[topic_id] = profile.get(topic_id, 0.0) + amount

    async def size(self) -> int:
        return len(self._profiles)

    async def has(self, user_id: str) -> bool:
        return user_id in self._profiles


class RedisInterestStore(InterestStore):
    USERS_KEY = "uti:users"

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @staticmethod
    def _key(user_id: str) -> str:
        return f"uti:{user_id}"

    async def get(self, user_id: str) -> Optional[InterestProfile]:
        pipe = self._redis.pipeline()
        pipe.sismember(self.USERS_KEY, user_id)
        pipe.hgetall(self._key(user_id))
        known, raw = await pipe.execute()
        if not known:
            return None
        return {topic: float(score) for topic, score in (raw or {}).items()}

    async def set(self, user_id: str, profile: InterestProfile) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.delete(self._key(user_id))
        if profile:
            pipe.hset(
                self._key(user_id),
                mapping={topic: str(score) for topic, score in profile.items()},
            )
        pipe.sadd(self.USERS_KEY, user_id)
        await pipe.execute()

    async def increment(self, user_id: str, topic_id: str, amount: float) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.hincrbyfloat(self._key(user_id), topic_id, amount)
        pipe.sadd(self.USERS_KEY, user_id)
        await pipe.execute()

    async def size(self) -> int:
        return await self._redis.scard(self.USERS_KEY)

    async def has(self, user_id: str) -> bool:
        return bool(await self._redis.sismember(self.USERS_KEY, user_id))
