"""Poller — claims due occurrences, targets a channel, dispatches, refills."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import structlog

from soundoff.core.voice import ChannelInfo, MembershipLookup, max_attended_channel
from soundoff.db.repository import ClaimedOccurrence, SoundCronRepository
from soundoff.queue.dispatch import JobDispatcher
from soundoff.queue.streams import SoundCronStreamJob

logger = structlog.get_logger(__name__)


class Poller:
    """Periodic control loop. A failing tick is logged and never stops the loop."""

    def __init__(
        self,
        repository: SoundCronRepository,
        lookup: MembershipLookup,
        dispatcher: JobDispatcher,
        interval: float = 27.0,
        horizon: float = 60.0,
    ) -> None:
        self.repository = repository
        self.lookup = lookup
        self.dispatcher = dispatcher
        self.interval = interval
        self.horizon = timedelta(seconds=horizon)
        self._running = False
        self._stopped = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    async def _target_channel(
        self, guild_id: str, resolved: dict[str, ChannelInfo | None]
    ) -> ChannelInfo | None:
        if guild_id not in resolved:
            try:
                channels = await self.lookup.guild_channels(guild_id)
            except Exception:
                logger.exception("Failed to get guild channels", guild_id=guild_id)
                return None
            resolved[guild_id] = max_attended_channel(channels)
            if resolved[guild_id] is None:
                logger.debug("No attended voice channel in guild", guild_id=guild_id)
        return resolved[guild_id]

    async def _build_jobs(self, occurrences: list[ClaimedOccurrence]) -> list[SoundCronStreamJob]:
        resolved: dict[str, ChannelInfo | None] = {}
        jobs = []
        for occurrence in occurrences:
            channel = await self._target_channel(occurrence.guild_id, resolved)
            if channel is None:
                continue
            jobs.append(
                SoundCronStreamJob(
                    soundcron_id=occurrence.soundcron_id,
                    name=occurrence.name,
                    guild_id=occurrence.guild_id,
                    run_time=occurrence.run_time,
                    target_channel_id=channel.id,
                )
            )
        return jobs

    async def _refresh(self, soundcron_ids: list[str], now: datetime) -> None:
        for soundcron_id in soundcron_ids:
            try:
                await self.repository.refresh(soundcron_id, now=now)
            except Exception:
                logger.exception("Failed to refresh schedule", soundcron_id=soundcron_id)

    async def tick(self, now: datetime | None = None) -> list[SoundCronStreamJob]:
        """Run one claim/dispatch/refresh cycle and return the dispatched jobs."""
        now = now or datetime.now(UTC)
        occurrences = await self.repository.claim_due(now + self.horizon, now=now)
        if not occurrences:
            return []

        jobs = await self._build_jobs(occurrences)
        if jobs:
            try:
                enqueued = await self.dispatcher.dispatch(*jobs)
                if enqueued < len(jobs):
                    logger.warning(
                        "Some jobs were not dispatched",
                        enqueued=enqueued,
                        count=len(jobs),
                        claimed=len(occurrences),
                    )
                else:
                    logger.info("Dispatched jobs", count=enqueued, claimed=len(occurrences))
            except Exception:
                # The occurrences stay claimed; they are not offered again.
                logger.exception("Failed to dispatch jobs", count=len(jobs))

        touched = list(dict.fromkeys(o.soundcron_id for o in occurrences))
        await self._refresh(touched, now)
        return jobs

    async def run_once(self) -> None:
        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping")
            return
        async with self._tick_lock:
            try:
                await self.tick()
            except Exception:
                logger.exception("Poll tick failed")

    async def run_forever(self) -> None:
        self._running = True
        self._stopped.clear()
        logger.info("Poller started", interval=self.interval, horizon=self.horizon.total_seconds())
        while self._running:
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass
        logger.info("Poller stopped")

    def stop(self) -> None:
        self._running = False
        self._stopped.set()
