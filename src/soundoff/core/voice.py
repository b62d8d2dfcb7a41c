"""Voice channel selection and the voice transport interfaces."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from soundoff.core.errors import VoiceJoinError

logger = logging.getLogger(__name__)

VOICE_CHANNEL = "voice"


@dataclass(frozen=True)
class ChannelInfo:
    id: str
    type: str
    member_count: int = 0


def max_attended_channel(channels: Iterable[ChannelInfo]) -> ChannelInfo | None:
    """Return the voice channel with the most members.

    The first channel wins a tie. Returns None when no voice channel has
    anyone in it.
    """
    best: ChannelInfo | None = None
    for channel in channels:
        if channel.type != VOICE_CHANNEL:
            continue
        if best is None or channel.member_count > best.member_count:
            best = channel
    if best is None or best.member_count <= 0:
        return None
    return best


class MembershipLookup(ABC):
    @abstractmethod
    async def guild_channels(self, guild_id: str) -> list[ChannelInfo]:
        """List a guild's channels with their current member counts."""
        ...


class VoiceTransport(ABC):
    """A joined voice connection with a bounded outbound frame buffer."""

    @abstractmethod
    async def send_frame(self, frame: bytes) -> None:
        """Queue one encoded frame, waiting while the buffer is full."""
        ...

    @abstractmethod
    async def speaking(self, active: bool) -> None: ...

    @abstractmethod
    async def drain(self) -> None:
        """Wait until every queued frame has been sent."""
        ...

    @abstractmethod
    async def disconnect(self) -> None: ...


class VoiceGateway(ABC):
    @abstractmethod
    async def join_voice(self, guild_id: str, channel_id: str) -> VoiceTransport: ...


@asynccontextmanager
async def voice_session(
    gateway: VoiceGateway, guild_id: str, channel_id: str
) -> AsyncIterator[VoiceTransport]:
    """Join a voice channel for the duration of the block.

    Speaking is switched on after joining; on exit speaking is switched off
    and the connection is closed, whatever happened inside.
    """
    try:
        transport = await gateway.join_voice(guild_id, channel_id)
    except VoiceJoinError:
        raise
    except Exception as exc:
        raise VoiceJoinError(
            f"unable to join voice channel {channel_id} in guild {guild_id}: {exc}"
        ) from exc

    try:
        await transport.speaking(True)
        yield transport
    finally:
        try:
            await transport.speaking(False)
        except Exception:
            logger.exception("Failed to stop speaking in guild %s", guild_id)
        try:
            await transport.disconnect()
        except Exception:
            logger.exception("Failed to disconnect from voice in guild %s", guild_id)
