"""Schedule store — SoundCron definitions and their pending occurrences."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import delete, exists, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundoff.core.errors import SoundCronNotFound, StorageError
from soundoff.core.schedule import ensure_utc, next_run_times
from soundoff.models.soundcron import SoundCron, SoundCronJob

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5


@dataclass(frozen=True)
class ClaimedOccurrence:
    """An occurrence the caller now exclusively owns."""

    soundcron_id: str
    name: str
    guild_id: str
    run_time: datetime


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Schedule store %s failed: %s", operation, exc)
        raise StorageError(operation, exc) from exc


def _insert(session: AsyncSession, model: type):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise StorageError(f"insert into {model.__tablename__}", ValueError(f"unsupported dialect {dialect}"))


def _now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else datetime.now(UTC)


class SoundCronRepository:
    """Owns SoundCron rows and the occurrence table, including the atomic claim.

    Every public operation runs in its own transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self.batch_size = batch_size

    async def _insert_occurrences(
        self, session: AsyncSession, soundcron_id: str, run_times: Iterable[datetime]
    ) -> None:
        rows = [{"soundcron_id": soundcron_id, "run_time": run_time} for run_time in run_times]
        if not rows:
            return
        stmt = (
            _insert(session, SoundCronJob)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["soundcron_id", "run_time"])
        )
        await session.execute(stmt)

    async def save(self, soundcron: SoundCron, now: datetime | None = None) -> None:
        """Upsert ``soundcron`` and its next occurrences in one transaction."""
        now = _now(now)
        run_times = next_run_times(soundcron.cron, now, self.batch_size)

        with _storage_errors("save"):
            async with self._session_factory() as session, session.begin():
                upsert = _insert(session, SoundCron).values(
                    id=soundcron.id,
                    name=soundcron.name,
                    guild_id=soundcron.guild_id,
                    cron=soundcron.cron,
                    file_size=soundcron.file_size,
                    last_accessed_at=now,
                )
                upsert = upsert.on_conflict_do_update(
                    index_elements=["id"],
                    set_={
                        "name": upsert.excluded.name,
                        "guild_id": upsert.excluded.guild_id,
                        "cron": upsert.excluded.cron,
                        "file_size": upsert.excluded.file_size,
                    },
                )
                await session.execute(upsert)
                await self._insert_occurrences(session, soundcron.id, run_times)

        logger.info(
            "Saved soundcron %s (%s) for guild %s: %s",
            soundcron.name,
            soundcron.id,
            soundcron.guild_id,
            soundcron.cron,
        )

    async def list(self, guild_id: str) -> list[SoundCron]:
        with _storage_errors("list"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SoundCron).where(SoundCron.guild_id == guild_id)
                )
                return list(result.scalars().all())

    async def get(self, soundcron_id: str) -> SoundCron | None:
        with _storage_errors("get"):
            async with self._session_factory() as session:
                return await session.get(SoundCron, soundcron_id)

    async def touch(self, soundcron_id: str, now: datetime | None = None) -> None:
        with _storage_errors("touch"):
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    update(SoundCron)
                    .where(SoundCron.id == soundcron_id)
                    .values(last_accessed_at=_now(now))
                )

    async def delete(self, soundcron_id: str) -> bool:
        """Remove the definition. Its occurrences stay behind as history."""
        with _storage_errors("delete"):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(SoundCron).where(SoundCron.id == soundcron_id)
                )
        deleted = bool(result.rowcount)
        if deleted:
            logger.info("Deleted soundcron %s", soundcron_id)
        return deleted

    async def claim_due(
        self, within: datetime, now: datetime | None = None
    ) -> list[ClaimedOccurrence]:
        """Claim every unclaimed occurrence with ``now < run_time <= within``.

        The claim is one conditional UPDATE .. RETURNING, so concurrent
        callers never receive the same occurrence.
        """
        now = _now(now)
        within = ensure_utc(within)
        claim = (
            update(SoundCronJob)
            .where(
                SoundCronJob.claimed_at.is_(None),
                SoundCronJob.run_time > now,
                SoundCronJob.run_time <= within,
                exists().where(SoundCron.id == SoundCronJob.soundcron_id),
            )
            .values(claimed_at=now)
            .returning(SoundCronJob.soundcron_id, SoundCronJob.run_time)
            .execution_options(synchronize_session=False)
        )

        with _storage_errors("claim_due"):
            async with self._session_factory() as session, session.begin():
                claimed = (await session.execute(claim)).all()
                if not claimed:
                    return []
                soundcron_ids = {row.soundcron_id for row in claimed}
                result = await session.execute(
                    select(SoundCron.id, SoundCron.name, SoundCron.guild_id).where(
                        SoundCron.id.in_(soundcron_ids)
                    )
                )
                definitions = {row.id: row for row in result}

        occurrences = [
            ClaimedOccurrence(
                soundcron_id=row.soundcron_id,
                name=definitions[row.soundcron_id].name,
                guild_id=definitions[row.soundcron_id].guild_id,
                run_time=ensure_utc(row.run_time),
            )
            for row in claimed
            if row.soundcron_id in definitions
        ]
        occurrences.sort(key=lambda o: (o.run_time, o.soundcron_id))
        logger.debug("Claimed %d occurrences due by %s", len(occurrences), within.isoformat())
        return occurrences

    async def refresh(self, soundcron_id: str, now: datetime | None = None) -> None:
        """Top the schedule back up to the next ``batch_size`` occurrences."""
        now = _now(now)
        with _storage_errors("refresh"):
            async with self._session_factory() as session, session.begin():
                cron = await session.scalar(
                    select(SoundCron.cron).where(SoundCron.id == soundcron_id)
                )
                if cron is None:
                    raise SoundCronNotFound(soundcron_id)
                run_times = next_run_times(cron, now, self.batch_size)
                await self._insert_occurrences(session, soundcron_id, run_times)
