"""Redis stream layout and the wire schema of dispatched occurrences."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ResponseError

from soundoff.core.schedule import ensure_utc

logger = logging.getLogger(__name__)

STREAM_NAME = "soundcron_jobs"
GROUP_NAME = "soundcron_streaming_group"

RUN_AT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_REQUIRED_FIELDS = ("jobName", "soundCronID", "guildID", "runAt", "targetChannelID")


async def ensure_consumer_group(
    client: aioredis.Redis, stream: str = STREAM_NAME, group: str = GROUP_NAME
) -> None:
    """Create the stream and its consumer group unless they already exist."""
    try:
        await client.xgroup_create(stream, group, id="$", mkstream=True)
        logger.info("Created consumer group %s on stream %s", group, stream)
    except ResponseError as exc:
        if "BUSYGROUP" not in str(exc):
            raise
        logger.debug("Consumer group %s already exists on stream %s", group, stream)


def format_run_at(run_time: datetime) -> str:
    return ensure_utc(run_time).strftime(RUN_AT_FORMAT)


def parse_run_at(text: str) -> datetime:
    """Parse an RFC 3339 timestamp. Offsets are required."""
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"runAt {text!r} has no UTC offset")
    return parsed.astimezone(UTC)


@dataclass(frozen=True)
class SoundCronStreamJob:
    """Everything a worker needs to play one occurrence."""

    soundcron_id: str
    name: str
    guild_id: str
    run_time: datetime
    target_channel_id: str

    def to_fields(self) -> dict[str, str]:
        return {
            "jobName": self.name,
            "soundCronID": self.soundcron_id,
            "guildID": self.guild_id,
            "runAt": format_run_at(self.run_time),
            "targetChannelID": self.target_channel_id,
        }

    def log_context(self) -> dict[str, str]:
        return {
            "soundcron_id": self.soundcron_id,
            "job_name": self.name,
            "guild_id": self.guild_id,
            "run_at": format_run_at(self.run_time),
            "target_channel_id": self.target_channel_id,
        }


@dataclass(frozen=True)
class ParsedJob:
    message_id: str
    job: SoundCronStreamJob


@dataclass(frozen=True)
class MalformedJob:
    message_id: str
    reason: str
    fields: dict[Any, Any] = field(default_factory=dict)


def _as_text(value: Any) -> str | None:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(value, str):
        return value
    return None


def parse_stream_job(message_id: str, fields: dict[Any, Any]) -> ParsedJob | MalformedJob:
    """Validate a raw stream entry into a job, or describe why it is unusable."""
    values: dict[str, str] = {}
    for key, raw in fields.items():
        name = _as_text(key)
        if name is not None:
            values[name] = raw

    text: dict[str, str] = {}
    for name in _REQUIRED_FIELDS:
        if name not in values:
            return MalformedJob(message_id, f"missing key {name!r}", fields)
        value = _as_text(values[name])
        if value is None:
            return MalformedJob(message_id, f"key {name!r} is not a string", fields)
        text[name] = value

    try:
        run_time = parse_run_at(text["runAt"])
    except ValueError as exc:
        return MalformedJob(message_id, f"invalid runAt time: {exc}", fields)

    return ParsedJob(
        message_id,
        SoundCronStreamJob(
            soundcron_id=text["soundCronID"],
            name=text["jobName"],
            guild_id=text["guildID"],
            run_time=run_time,
            target_channel_id=text["targetChannelID"],
        ),
    )
