"""Tests for soundoff.core.soundcrons."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from soundoff.core.blacklist import MemoryBlacklist
from soundoff.core.errors import InvalidCronExpression, SoundCronAlreadyExists, StorageLimitExceeded
from soundoff.core.soundcrons import SoundCronService

T = datetime(2023, 10, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def blacklist():
    return MemoryBlacklist()


@pytest.fixture
def service(repository, blacklist):
    return SoundCronService(repository, blacklist, max_storage_bytes=1000)


async def test_add_saves_and_schedules(service, repository):
    soundcron = await service.add("G1", "standup", "0 9 * * 1-5", 400, now=T)

    stored = await repository.get(soundcron.id)
    assert stored.name == "standup"
    assert stored.file_size == 400
    claimed = await repository.claim_due(T + timedelta(days=1), now=T)
    assert [o.run_time for o in claimed] == [datetime(2023, 10, 2, 9, 0, tzinfo=UTC)]


async def test_add_rejects_duplicate_name(service):
    await service.add("G1", "standup", "@daily", 100, now=T)

    with pytest.raises(SoundCronAlreadyExists):
        await service.add("G1", "standup", "@hourly", 100, now=T)


async def test_same_name_allowed_in_other_guild(service):
    await service.add("G1", "standup", "@daily", 100, now=T)
    await service.add("G2", "standup", "@daily", 100, now=T)


async def test_add_enforces_guild_quota(service):
    await service.add("G1", "one", "@daily", 700, now=T)

    with pytest.raises(StorageLimitExceeded) as exc_info:
        await service.add("G1", "two", "@daily", 301, now=T)

    assert exc_info.value.current == 700
    assert exc_info.value.maximum == 1000
    await service.add("G1", "three", "@daily", 300, now=T)


async def test_add_rejects_invalid_cron(service, repository):
    with pytest.raises(InvalidCronExpression):
        await service.add("G1", "broken", "every tuesday", 10, now=T)

    assert await repository.list("G1") == []


async def test_list_most_recently_used_first(service, repository):
    first = await service.add("G1", "first", "@daily", 10, now=T)
    second = await service.add("G1", "second", "@daily", 10, now=T + timedelta(minutes=1))
    await repository.touch(first.id, now=T + timedelta(minutes=2))

    assert [s.name for s in await service.list("G1")] == ["first", "second"]
    assert second.id in {s.id for s in await service.list("G1")}


async def test_delete_blacklists_in_flight_occurrences(service, blacklist, repository):
    soundcron = await service.add("G1", "standup", "*/5 * * * *", 10, now=T)

    assert await service.delete(soundcron.id) is True

    assert await blacklist.is_blacklisted(soundcron.id)
    assert await repository.get(soundcron.id) is None
