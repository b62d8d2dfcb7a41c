"""In-memory voice doubles shared by the delivery tests."""

from __future__ import annotations

import asyncio

from soundoff.core.voice import ChannelInfo, MembershipLookup, VoiceGateway, VoiceTransport


class RecordingTransport(VoiceTransport):
    def __init__(self, fail_after: int | None = None, stall: bool = False) -> None:
        self.frames: list[bytes] = []
        self.speaking_states: list[bool] = []
        self.drained = False
        self.disconnected = False
        self.fail_after = fail_after
        self.stall = stall

    async def send_frame(self, frame: bytes) -> None:
        if self.stall:
            await asyncio.Event().wait()
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise ConnectionError("voice connection dropped")
        self.frames.append(frame)

    async def speaking(self, active: bool) -> None:
        self.speaking_states.append(active)

    async def drain(self) -> None:
        self.drained = True

    async def disconnect(self) -> None:
        self.disconnected = True


class FakeGateway(VoiceGateway):
    def __init__(self, transport: VoiceTransport | None = None, error: Exception | None = None):
        self.transport = transport or RecordingTransport()
        self.error = error
        self.joins: list[tuple[str, str]] = []

    async def join_voice(self, guild_id: str, channel_id: str) -> VoiceTransport:
        self.joins.append((guild_id, channel_id))
        if self.error is not None:
            raise self.error
        return self.transport


class FakeLookup(MembershipLookup):
    def __init__(self, guilds: dict[str, list[ChannelInfo]]) -> None:
        self.guilds = guilds
        self.calls: list[str] = []

    async def guild_channels(self, guild_id: str) -> list[ChannelInfo]:
        self.calls.append(guild_id)
        if guild_id not in self.guilds:
            raise LookupError(f"guild {guild_id} is not available")
        return self.guilds[guild_id]
