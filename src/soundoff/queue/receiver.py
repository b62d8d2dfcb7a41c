"""Consumer side of the work queue."""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from soundoff.queue.streams import (
    GROUP_NAME,
    STREAM_NAME,
    MalformedJob,
    SoundCronStreamJob,
    parse_stream_job,
)

logger = logging.getLogger(__name__)


class RedisJobReceiver:
    """Reads jobs from the stream as one named consumer of the shared group.

    Jobs are acknowledged as soon as they are read, so a worker that dies
    before playing a job drops it. Entries that fail validation are left
    pending for inspection.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        consumer: str,
        stream: str = STREAM_NAME,
        group: str = GROUP_NAME,
        count: int = 100,
        block_ms: int = 0,
    ) -> None:
        self.client = client
        self.consumer = consumer
        self.stream = stream
        self.group = group
        self.count = count
        self.block_ms = block_ms

    async def receive_jobs(self) -> list[SoundCronStreamJob]:
        """Block until at least one entry is available and return the valid jobs."""
        response = await self.client.xreadgroup(
            self.group,
            self.consumer,
            {self.stream: ">"},
            count=self.count,
            block=self.block_ms,
        )

        jobs: list[SoundCronStreamJob] = []
        for _stream, messages in response or []:
            for message_id, fields in messages:
                parsed = parse_stream_job(message_id, fields or {})
                if isinstance(parsed, MalformedJob):
                    logger.warning(
                        "Skipping malformed stream entry %s: %s", parsed.message_id, parsed.reason
                    )
                    continue

                jobs.append(parsed.job)
                try:
                    await self.client.xack(self.stream, self.group, message_id)
                except RedisError as exc:
                    logger.error("Failed to acknowledge stream entry %s: %s", message_id, exc)
        return jobs
