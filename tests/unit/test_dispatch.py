"""Tests for soundoff.queue.dispatch."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

from redis.exceptions import ResponseError

from soundoff.queue.streams import SoundCronStreamJob


def _job(soundcron_id: str = "s1") -> SoundCronStreamJob:
    return SoundCronStreamJob(
        soundcron_id=soundcron_id,
        name="standup",
        guild_id="G1",
        run_time=datetime(2023, 10, 1, 12, 5, tzinfo=UTC),
        target_channel_id="C9",
    )


def _client_with_pipeline(results):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    client = MagicMock()
    client.pipeline.return_value.__aenter__.return_value = pipe
    return client, pipe


async def test_printing_dispatcher_logs_each_job(caplog):
    from soundoff.queue.dispatch import PrintingDispatcher

    with caplog.at_level("INFO", logger="soundoff.queue.dispatch"):
        assert await PrintingDispatcher().dispatch(_job("a"), _job("b")) == 2

    messages = [r.getMessage() for r in caplog.records]
    assert len(messages) == 2
    assert "a" in messages[0] and "2023-10-01 12:05:00" in messages[0]


async def test_redis_dispatcher_pipelines_all_jobs():
    from soundoff.queue.dispatch import RedisStreamDispatcher

    client, pipe = _client_with_pipeline(["1-0", "2-0"])
    jobs = [_job("a"), _job("b")]

    assert await RedisStreamDispatcher(client).dispatch(*jobs) == 2

    client.pipeline.assert_called_once_with(transaction=False)
    assert pipe.xadd.call_count == 2
    pipe.xadd.assert_any_call("soundcron_jobs", jobs[0].to_fields())
    pipe.xadd.assert_any_call("soundcron_jobs", jobs[1].to_fields())
    pipe.execute.assert_awaited_once_with(raise_on_error=False)


async def test_redis_dispatcher_logs_partial_failure(caplog):
    from soundoff.queue.dispatch import RedisStreamDispatcher

    client, _pipe = _client_with_pipeline(["1-0", ResponseError("OOM")])

    with caplog.at_level("ERROR", logger="soundoff.queue.dispatch"):
        assert await RedisStreamDispatcher(client).dispatch(_job("a"), _job("b")) == 1

    errors = [r.getMessage() for r in caplog.records if r.levelname == "ERROR"]
    assert len(errors) == 1
    assert "b" in errors[0]


async def test_redis_dispatcher_empty_batch_is_noop():
    from soundoff.queue.dispatch import RedisStreamDispatcher

    client, _pipe = _client_with_pipeline([])

    assert await RedisStreamDispatcher(client).dispatch() == 0

    client.pipeline.assert_not_called()


async def test_get_dispatcher_dry_run():
    from soundoff.config import Settings
    from soundoff.queue.dispatch import PrintingDispatcher, get_dispatcher

    dispatcher = await get_dispatcher(Settings(dry_run=True))

    assert isinstance(dispatcher, PrintingDispatcher)


async def test_get_dispatcher_creates_consumer_group():
    from soundoff.config import Settings
    from soundoff.queue.dispatch import RedisStreamDispatcher, get_dispatcher

    client = MagicMock()
    with patch("soundoff.queue.dispatch.ensure_consumer_group", new=AsyncMock()) as ensure:
        dispatcher = await get_dispatcher(Settings(dry_run=False), client=client)

    ensure.assert_awaited_once_with(client)
    assert isinstance(dispatcher, RedisStreamDispatcher)
