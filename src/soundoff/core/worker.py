"""Worker — consumes dispatched jobs and schedules their delivery."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from soundoff.config import Settings
from soundoff.core.blacklist import Blacklist
from soundoff.core.blobs import HttpBlobFetcher
from soundoff.core.delivery import Delivery
from soundoff.core.voice import VoiceGateway
from soundoff.queue.receiver import RedisJobReceiver
from soundoff.queue.streams import SoundCronStreamJob

logger = structlog.get_logger(__name__)

# Deliveries whose fire time is this far behind are forgotten even if their
# execute action never ran (for example because it misfired).
_STALE_AFTER = timedelta(minutes=10)


class Worker:
    """Receives jobs and runs each as an independent, scheduled Delivery.

    Deferred actions live only in this process; jobs received before a
    restart are not replayed.
    """

    def __init__(
        self,
        receiver: RedisJobReceiver,
        blacklist: Blacklist,
        fetcher: HttpBlobFetcher,
        gateway: VoiceGateway | None,
        settings: Settings,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.receiver = receiver
        self.blacklist = blacklist
        self.fetcher = fetcher
        self.gateway = gateway
        self.settings = settings
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.deliveries: dict[str, Delivery] = {}
        self._running = False

    def handle(self, job: SoundCronStreamJob) -> Delivery:
        delivery = Delivery(
            job,
            blacklist=self.blacklist,
            fetcher=self.fetcher,
            gateway=self.gateway,
            preload_margin=self.settings.preload_margin_seconds,
            send_timeout=self.settings.voice_send_timeout_seconds,
            dry_run=self.settings.dry_run,
        )
        delivery.schedule(self.scheduler, self.settings.execute_misfire_grace_seconds)
        self.deliveries[delivery.key] = delivery
        return delivery

    def _prune(self, now: datetime | None = None) -> None:
        cutoff = (now or datetime.now(UTC)) - _STALE_AFTER
        for key, delivery in list(self.deliveries.items()):
            if delivery.done or delivery.job.run_time < cutoff:
                del self.deliveries[key]

    async def receive_once(self) -> list[Delivery]:
        jobs = await self.receiver.receive_jobs()
        self._prune()
        deliveries = [self.handle(job) for job in jobs]
        if deliveries:
            logger.info("Received jobs", count=len(deliveries))
        return deliveries

    async def run_forever(self) -> None:
        """Receive until stopped. A failure to read from the queue is fatal."""
        self.scheduler.start()
        self._running = True
        logger.info("Worker started", consumer=self.receiver.consumer)
        try:
            while self._running:
                await self.receive_once()
        except Exception:
            logger.exception("Failed to receive jobs")
            raise
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._running = False

    def shutdown(self) -> None:
        self._running = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Worker stopped")
