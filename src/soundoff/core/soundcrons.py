"""SoundCron management used by the command surface."""

from __future__ import annotations

import logging
from datetime import datetime

from soundoff.core.blacklist import Blacklist
from soundoff.core.errors import SoundCronAlreadyExists, StorageLimitExceeded
from soundoff.core.schedule import validate_cron
from soundoff.db.repository import SoundCronRepository
from soundoff.models.soundcron import SoundCron, new_soundcron_id

logger = logging.getLogger(__name__)


class SoundCronService:
    def __init__(
        self,
        repository: SoundCronRepository,
        blacklist: Blacklist,
        max_storage_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self.repository = repository
        self.blacklist = blacklist
        self.max_storage_bytes = max_storage_bytes

    async def add(
        self,
        guild_id: str,
        name: str,
        cron: str,
        file_size: int,
        now: datetime | None = None,
    ) -> SoundCron:
        """Validate and persist a new SoundCron for ``guild_id``.

        Raises StorageLimitExceeded when the guild's stored audio would go
        over quota, SoundCronAlreadyExists on a name clash and
        InvalidCronExpression for a bad expression.
        """
        existing = await self.repository.list(guild_id)

        used = sum(s.file_size for s in existing)
        if used + file_size > self.max_storage_bytes:
            raise StorageLimitExceeded(file_size, used, self.max_storage_bytes)

        if any(s.name == name for s in existing):
            raise SoundCronAlreadyExists(guild_id, name)

        validate_cron(cron)

        soundcron = SoundCron(
            id=new_soundcron_id(),
            name=name,
            guild_id=guild_id,
            cron=cron,
            file_size=file_size,
        )
        await self.repository.save(soundcron, now=now)
        return soundcron

    async def list(self, guild_id: str) -> list[SoundCron]:
        """Return the guild's SoundCrons, most recently used first."""
        soundcrons = await self.repository.list(guild_id)
        return sorted(soundcrons, key=lambda s: s.last_accessed_at, reverse=True)

    async def touch(self, soundcron_id: str) -> None:
        await self.repository.touch(soundcron_id)

    async def delete(self, soundcron_id: str) -> bool:
        """Delete the definition and blacklist any occurrences already in flight."""
        deleted = await self.repository.delete(soundcron_id)
        await self.blacklist.add(soundcron_id)
        logger.info("Removed soundcron %s (existed=%s)", soundcron_id, deleted)
        return deleted
