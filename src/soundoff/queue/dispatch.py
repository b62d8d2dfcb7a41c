"""Dispatchers — hand claimed occurrences off to be executed somewhere."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import redis.asyncio as aioredis

from soundoff.config import Settings
from soundoff.queue.streams import STREAM_NAME, SoundCronStreamJob, ensure_consumer_group

logger = logging.getLogger(__name__)


class JobDispatcher(ABC):
    """Accepts a batch of jobs. Implementations may queue, print, or run them."""

    @abstractmethod
    async def dispatch(self, *jobs: SoundCronStreamJob) -> int:
        """Submit ``jobs`` and return how many were accepted."""
        ...


class PrintingDispatcher(JobDispatcher):
    """Logs jobs instead of queueing them. For development and dry runs."""

    async def dispatch(self, *jobs: SoundCronStreamJob) -> int:
        for job in jobs:
            logger.info(
                "Handling SoundCron job %s (%s) for guild %s at %s in channel %s",
                job.name,
                job.soundcron_id,
                job.guild_id,
                job.run_time.strftime("%Y-%m-%d %H:%M:%S"),
                job.target_channel_id,
            )
        return len(jobs)


class RedisStreamDispatcher(JobDispatcher):
    """Appends jobs to the ``soundcron_jobs`` stream for workers to consume.

    A batch is pipelined without MULTI: a failed XADD does not undo the
    others.
    """

    def __init__(self, client: aioredis.Redis, stream: str = STREAM_NAME) -> None:
        self.client = client
        self.stream = stream

    @classmethod
    async def create(cls, client: aioredis.Redis) -> RedisStreamDispatcher:
        await ensure_consumer_group(client)
        return cls(client)

    async def dispatch(self, *jobs: SoundCronStreamJob) -> int:
        if not jobs:
            return 0
        async with self.client.pipeline(transaction=False) as pipe:
            for job in jobs:
                pipe.xadd(self.stream, job.to_fields())
            results = await pipe.execute(raise_on_error=False)

        failures = [(job, r) for job, r in zip(jobs, results) if isinstance(r, Exception)]
        for job, error in failures:
            logger.error(
                "Failed to enqueue soundcron %s run at %s: %s",
                job.soundcron_id,
                job.run_time.isoformat(),
                error,
            )
        logger.info("Enqueued %d of %d jobs", len(jobs) - len(failures), len(jobs))
        return len(jobs) - len(failures)


async def get_dispatcher(settings: Settings, client: aioredis.Redis | None = None) -> JobDispatcher:
    if settings.dry_run:
        return PrintingDispatcher()
    if client is None:
        from soundoff.cache.redis import get_redis

        client = get_redis()
    return await RedisStreamDispatcher.create(client)
