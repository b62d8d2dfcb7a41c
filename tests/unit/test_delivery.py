"""Tests for soundoff.core.delivery."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from soundoff.core.blacklist import MemoryBlacklist
from soundoff.core.delivery import Delivery, DeliveryState
from soundoff.core.errors import BlacklistError, BlobFetchError
from soundoff.core.opus import encode_frames
from soundoff.queue.streams import SoundCronStreamJob

from .fakes import FakeGateway, RecordingTransport

RUN_TIME = datetime(2023, 10, 1, 12, 5, tzinfo=UTC)
JOB = SoundCronStreamJob(
    soundcron_id="s1",
    name="standup",
    guild_id="G1",
    run_time=RUN_TIME,
    target_channel_id="C9",
)


def _fetcher(payload: bytes = b"", error: Exception | None = None) -> MagicMock:
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=payload, side_effect=error)
    fetcher.url_for.return_value = "http://blobs/soundoff/s1"
    return fetcher


def _delivery(**kwargs) -> Delivery:
    kwargs.setdefault("blacklist", MemoryBlacklist())
    kwargs.setdefault("fetcher", _fetcher(encode_frames([b"a", b"b", b"c"])))
    kwargs.setdefault("gateway", FakeGateway())
    return Delivery(JOB, **kwargs)


async def test_plays_preloaded_audio():
    gateway = FakeGateway()
    delivery = _delivery(gateway=gateway)

    await delivery.preload()
    assert delivery.state is DeliveryState.READY

    assert await delivery.execute() is DeliveryState.FINISHED
    assert gateway.joins == [("G1", "C9")]
    assert gateway.transport.frames == [b"a", b"b", b"c"]
    assert gateway.transport.disconnected
    assert delivery.frames_sent == 3
    assert delivery.done


async def test_blacklisted_job_never_joins_voice():
    blacklist = MemoryBlacklist()
    await blacklist.add("s1")
    fetcher = _fetcher()
    gateway = FakeGateway()
    delivery = _delivery(blacklist=blacklist, fetcher=fetcher, gateway=gateway)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.SKIPPED
    fetcher.fetch.assert_not_awaited()
    assert gateway.joins == []


async def test_fetch_failure_abandons_occurrence():
    gateway = FakeGateway()
    delivery = _delivery(fetcher=_fetcher(error=BlobFetchError("404")), gateway=gateway)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.PRELOAD_FAILED
    assert gateway.joins == []


async def test_blacklist_failure_abandons_occurrence():
    blacklist = MagicMock()
    blacklist.is_blacklisted = AsyncMock(side_effect=BlacklistError("down"))
    gateway = FakeGateway()
    delivery = _delivery(blacklist=blacklist, gateway=gateway)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.PRELOAD_FAILED
    assert gateway.joins == []


async def test_execute_waits_for_preload():
    delivery = _delivery()

    execute = asyncio.create_task(delivery.execute())
    await asyncio.sleep(0)
    assert not execute.done()

    await delivery.preload()
    assert await execute is DeliveryState.FINISHED


async def test_unexpected_preload_error_still_releases_execute():
    fetcher = _fetcher(error=RuntimeError("boom"))
    delivery = _delivery(fetcher=fetcher)
    execute = asyncio.create_task(delivery.execute())

    try:
        await delivery.preload()
    except RuntimeError:
        pass

    assert await execute is DeliveryState.PRELOAD_FAILED


async def test_transport_failure_fails_and_disconnects():
    transport = RecordingTransport(fail_after=1)
    gateway = FakeGateway(transport)
    delivery = _delivery(gateway=gateway)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.FAILED
    assert transport.frames == [b"a"]
    assert transport.speaking_states == [True, False]
    assert transport.disconnected


async def test_join_failure_fails_occurrence():
    delivery = _delivery(gateway=FakeGateway(error=RuntimeError("forbidden")))

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.FAILED


async def test_send_timeout_fails_occurrence():
    transport = RecordingTransport(stall=True)
    delivery = _delivery(gateway=FakeGateway(transport), send_timeout=0.01)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.FAILED
    assert transport.disconnected


async def test_dry_run_never_fetches_or_joins():
    fetcher = _fetcher()
    gateway = FakeGateway()
    delivery = _delivery(fetcher=fetcher, gateway=gateway, dry_run=True)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.FINISHED
    fetcher.fetch.assert_not_awaited()
    assert gateway.joins == []


async def test_missing_gateway_fails_occurrence():
    delivery = _delivery(gateway=None)

    await delivery.preload()

    assert await delivery.execute() is DeliveryState.FAILED


def test_schedule_registers_preload_and_execute():
    scheduler = MagicMock()
    delivery = _delivery(preload_margin=5)

    delivery.schedule(scheduler, execute_misfire_grace=30)

    assert scheduler.add_job.call_count == 2
    preload, execute = scheduler.add_job.call_args_list
    assert preload.args == (delivery.preload,)
    assert preload.kwargs["run_date"] == RUN_TIME - timedelta(seconds=5)
    assert preload.kwargs["misfire_grace_time"] is None
    assert execute.args == (delivery.execute,)
    assert execute.kwargs["run_date"] == RUN_TIME
    assert execute.kwargs["misfire_grace_time"] == 30
    assert preload.kwargs["id"] != execute.kwargs["id"]


def test_key_identifies_occurrence():
    assert _delivery().key == "s1:2023-10-01T12:05:00Z"
