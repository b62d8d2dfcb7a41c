"""Process entry points: the poller daemon and the worker daemon."""

from __future__ import annotations

import asyncio
import signal

import structlog
from sqlalchemy import text

from soundoff.config import Settings, get_settings

logger = structlog.get_logger(__name__)


async def _verify_database() -> None:
    from soundoff.db.session import get_session_factory

    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        logger.info("DB connection verified")
    except Exception as exc:
        logger.warning("DB connection check failed", error=str(exc))


def _install_signal_handlers(stop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: _on_signal(s, stop))


def _on_signal(sig: int, stop) -> None:
    logger.info("Received signal, shutting down gracefully", signal=sig)
    stop()


async def run_poller(settings: Settings | None = None) -> None:
    from soundoff.cache.redis import close_redis
    from soundoff.channels.discord import DiscordGateway
    from soundoff.core.poller import Poller
    from soundoff.db.repository import SoundCronRepository
    from soundoff.db.session import dispose_engine, get_session_factory
    from soundoff.queue.dispatch import get_dispatcher

    settings = settings or get_settings()
    await _verify_database()

    gateway = DiscordGateway(settings)
    await gateway.start()
    poller = Poller(
        SoundCronRepository(get_session_factory(), settings.schedule_batch_size),
        gateway,
        await get_dispatcher(settings),
        interval=settings.poll_interval_seconds,
        horizon=settings.claim_horizon_seconds,
    )
    _install_signal_handlers(poller.stop)
    try:
        await poller.run_forever()
    finally:
        await gateway.stop()
        await close_redis()
        await dispose_engine()


async def run_worker(settings: Settings | None = None) -> None:
    from soundoff.cache.redis import close_redis, get_redis
    from soundoff.channels.discord import DiscordGateway
    from soundoff.core.blacklist import MemoryBlacklist, RedisBlacklist
    from soundoff.core.blobs import HttpBlobFetcher
    from soundoff.core.worker import Worker
    from soundoff.queue.receiver import RedisJobReceiver
    from soundoff.queue.streams import ensure_consumer_group

    settings = settings or get_settings()
    client = get_redis()
    await ensure_consumer_group(client)

    gateway = None
    if settings.dry_run:
        blacklist = MemoryBlacklist(settings.blacklist_ttl_seconds)
    else:
        blacklist = RedisBlacklist(client, settings.blacklist_ttl_seconds)
        gateway = DiscordGateway(settings)
        await gateway.start()

    worker = Worker(
        RedisJobReceiver(client, settings.consumer_name),
        blacklist,
        HttpBlobFetcher.from_settings(settings),
        gateway,
        settings,
    )
    # Blocking reads do not observe the stop flag, so a signal cancels the read.
    main_task = asyncio.current_task()

    def stop() -> None:
        worker.stop()
        if main_task is not None:
            main_task.cancel()

    _install_signal_handlers(stop)
    try:
        await worker.run_forever()
    except asyncio.CancelledError:
        logger.info("Worker cancelled")
    finally:
        if gateway is not None:
            await gateway.stop()
        await close_redis()
