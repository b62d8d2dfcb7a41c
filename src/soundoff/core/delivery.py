"""Delivery of one occurrence: preload the audio, then play it at the fire time."""

from __future__ import annotations

import asyncio
import enum
import io
from datetime import datetime, timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from soundoff.core.blacklist import Blacklist
from soundoff.core.blobs import HttpBlobFetcher
from soundoff.core.errors import BlacklistError, BlobFetchError
from soundoff.core.opus import iter_frames, stream_to_voice
from soundoff.core.voice import VoiceGateway, voice_session
from soundoff.queue.streams import SoundCronStreamJob, format_run_at

logger = structlog.get_logger(__name__)


class DeliveryState(enum.StrEnum):
    SCHEDULED = "scheduled"
    PRELOADING = "preloading"
    READY = "ready"
    PRELOAD_FAILED = "preload_failed"
    SKIPPED = "skipped"
    EXECUTING = "executing"
    FINISHED = "finished"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        DeliveryState.PRELOAD_FAILED,
        DeliveryState.SKIPPED,
        DeliveryState.FINISHED,
        DeliveryState.FAILED,
    }
)


class Delivery:
    """Two deferred actions joined by a single-slot handoff.

    ``preload`` runs shortly before the fire time and always resolves the
    handoff, with the payload or with None. ``execute`` runs at the fire
    time and waits on the handoff; no payload means nothing is joined or
    played.
    """

    def __init__(
        self,
        job: SoundCronStreamJob,
        *,
        blacklist: Blacklist,
        fetcher: HttpBlobFetcher,
        gateway: VoiceGateway | None,
        preload_margin: float = 5.0,
        send_timeout: float = 60.0,
        dry_run: bool = False,
    ) -> None:
        self.job = job
        self.blacklist = blacklist
        self.fetcher = fetcher
        self.gateway = gateway
        self.preload_margin = preload_margin
        self.send_timeout = send_timeout
        self.dry_run = dry_run
        self.state = DeliveryState.SCHEDULED
        self.frames_sent = 0
        self.log = logger.bind(**job.log_context())
        self._payload: asyncio.Future[bytes | None] | None = None

    @property
    def key(self) -> str:
        return f"{self.job.soundcron_id}:{format_run_at(self.job.run_time)}"

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def preload_at(self) -> datetime:
        return self.job.run_time - timedelta(seconds=self.preload_margin)

    def _handoff(self) -> asyncio.Future[bytes | None]:
        if self._payload is None:
            self._payload = asyncio.get_running_loop().create_future()
        return self._payload

    def _hand_off(self, payload: bytes | None) -> None:
        handoff = self._handoff()
        if not handoff.done():
            handoff.set_result(payload)

    def schedule(self, scheduler: AsyncIOScheduler, execute_misfire_grace: int | None = 30) -> None:
        """Register the preload and execute actions as one-shot scheduler jobs."""
        scheduler.add_job(
            self.preload,
            trigger="date",
            run_date=self.preload_at,
            id=f"{self.key}:preload",
            replace_existing=True,
            misfire_grace_time=None,
        )
        scheduler.add_job(
            self.execute,
            trigger="date",
            run_date=self.job.run_time,
            id=f"{self.key}:execute",
            replace_existing=True,
            misfire_grace_time=execute_misfire_grace,
        )
        self.log.info("Scheduled delivery", preload_at=self.preload_at.isoformat())

    async def preload(self) -> None:
        self.state = DeliveryState.PRELOADING
        try:
            if await self.blacklist.is_blacklisted(self.job.soundcron_id):
                self.log.info("Skipping blacklisted job")
                self.state = DeliveryState.SKIPPED
                return

            if self.dry_run:
                self.log.info(
                    "Dry run: job would be preloaded",
                    endpoint=self.fetcher.url_for(self.job.soundcron_id),
                )
                self.state = DeliveryState.READY
                self._hand_off(b"")
                return

            payload = await self.fetcher.fetch(self.job.soundcron_id)
        except (BlacklistError, BlobFetchError) as exc:
            self.log.error("Failed to preload audio", error=str(exc))
            self.state = DeliveryState.PRELOAD_FAILED
        else:
            self.state = DeliveryState.READY
            self._hand_off(payload)
            self.log.debug("Preloaded audio", size=len(payload))
        finally:
            if self.state is DeliveryState.PRELOADING:
                self.state = DeliveryState.PRELOAD_FAILED
            self._hand_off(None)

    async def execute(self) -> DeliveryState:
        payload = await self._handoff()
        if payload is None:
            if self.state is not DeliveryState.SKIPPED:
                self.log.error("No audio preloaded, abandoning occurrence")
            return self.state

        if self.dry_run:
            self.log.info("Dry run: job would be executed")
            self.state = DeliveryState.FINISHED
            return self.state

        if self.gateway is None:
            self.log.error("No voice gateway configured, abandoning occurrence")
            self.state = DeliveryState.FAILED
            return self.state

        self.state = DeliveryState.EXECUTING
        try:
            async with voice_session(
                self.gateway, self.job.guild_id, self.job.target_channel_id
            ) as transport:
                self.frames_sent = await stream_to_voice(
                    iter_frames(io.BytesIO(payload)), transport, self.send_timeout
                )
        except Exception as exc:
            self.state = DeliveryState.FAILED
            self.log.error("Failed to execute scheduled job", error=str(exc), exc_info=True)
            return self.state

        self.state = DeliveryState.FINISHED
        self.log.info("Played scheduled job", frames=self.frames_sent)
        return self.state
