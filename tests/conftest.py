"""Shared fixtures: an isolated SQLite schedule store per test."""

from __future__ import annotations

import os

import pytest

os.environ.setdefault("DB_PASSWORD", "test-password")
os.environ.setdefault("DISCORD_BOT_TOKEN", "")


@pytest.fixture
async def session_factory(tmp_path):
    from soundoff.db.session import Base, create_engine, make_session_factory

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'soundoff.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def repository(session_factory):
    from soundoff.db.repository import SoundCronRepository

    return SoundCronRepository(session_factory)
