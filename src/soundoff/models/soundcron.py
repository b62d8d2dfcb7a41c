"""SoundCron definitions and their scheduled occurrences."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from soundoff.db.session import Base


def new_soundcron_id() -> str:
    return str(uuid.uuid4())


class SoundCron(Base):
    __tablename__ = "soundcrons"
    __table_args__ = (UniqueConstraint("guild_id", "name", name="uq_soundcron_guild_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_soundcron_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    guild_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    cron: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<SoundCron {self.name!r} id={self.id!r} guild={self.guild_id!r}>"


class SoundCronJob(Base):
    """One occurrence of a SoundCron. ``claimed_at`` is set once, by the poller."""

    __tablename__ = "soundcron_jobs"
    __table_args__ = (
        UniqueConstraint("soundcron_id", "run_time", name="uq_soundcron_job_run_time"),
    )

    # Integer (not BigInteger) so SQLite treats it as a rowid alias.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    soundcron_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    run_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<SoundCronJob {self.soundcron_id!r} run_time={self.run_time!s}>"
