"""Time-boxed denylist of SoundCron IDs whose occurrences must not play.

Deleting a SoundCron does not recall occurrences that were already handed to
the work queue; workers consult this list before fetching audio instead.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from soundoff.core.errors import BlacklistError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def blacklist_key(soundcron_id: str) -> str:
    return f"soundcron:job:{soundcron_id}:blacklist"


class Blacklist(ABC):
    @abstractmethod
    async def add(self, soundcron_id: str) -> None: ...

    @abstractmethod
    async def is_blacklisted(self, soundcron_id: str) -> bool: ...


class RedisBlacklist(Blacklist):
    def __init__(self, client: aioredis.Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def add(self, soundcron_id: str) -> None:
        try:
            await self.client.set(blacklist_key(soundcron_id), "1", ex=self.ttl_seconds)
        except RedisError as exc:
            raise BlacklistError(
                f"failed to add soundcron {soundcron_id} to blacklist: {exc}"
            ) from exc
        logger.info("Blacklisted soundcron %s for %ds", soundcron_id, self.ttl_seconds)

    async def is_blacklisted(self, soundcron_id: str) -> bool:
        try:
            return bool(await self.client.exists(blacklist_key(soundcron_id)))
        except RedisError as exc:
            raise BlacklistError(
                f"failed to check blacklist for soundcron {soundcron_id}: {exc}"
            ) from exc


class MemoryBlacklist(Blacklist):
    """In-process blacklist for dry runs and tests."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._expires_at: dict[str, float] = {}

    async def add(self, soundcron_id: str) -> None:
        self._expires_at[soundcron_id] = time.monotonic() + self.ttl_seconds

    async def is_blacklisted(self, soundcron_id: str) -> bool:
        expires_at = self._expires_at.get(soundcron_id)
        if expires_at is None:
            return False
        if expires_at <= time.monotonic():
            del self._expires_at[soundcron_id]
            return False
        return True
