"""Discord adapter — guild membership lookup and voice playback."""

from __future__ import annotations

import asyncio
import contextlib
import logging

import discord

from soundoff.config import Settings, get_settings
from soundoff.core.errors import VoiceJoinError
from soundoff.core.voice import (
    VOICE_CHANNEL,
    ChannelInfo,
    MembershipLookup,
    VoiceGateway,
    VoiceTransport,
)

logger = logging.getLogger(__name__)

# Discord expects one 20 ms Opus frame per packet.
FRAME_INTERVAL = 0.02
DEFAULT_BUFFER_FRAMES = 100


class FramePacer:
    """Schedules packet N at ``start + N * interval`` so oversleeps do not accumulate."""

    def __init__(self, interval: float = FRAME_INTERVAL) -> None:
        self.interval = interval
        self.start = 0.0
        self.count = 0

    def reset(self, now: float) -> None:
        self.start = now
        self.count = 0

    def delay(self, now: float) -> float:
        """Count one sent packet and return how long to wait before the next."""
        self.count += 1
        return max(0.0, self.start + self.count * self.interval - now)


class DiscordVoiceTransport(VoiceTransport):
    """Paces pre-encoded frames onto a voice connection from a bounded queue.

    The first failed packet stops the pump; queued frames are discarded and
    later sends or drains raise ConnectionError.
    """

    def __init__(self, voice_client: discord.VoiceClient, buffer_frames: int = DEFAULT_BUFFER_FRAMES):
        self.voice_client = voice_client
        self.pacer = FramePacer()
        self._frames: asyncio.Queue[bytes] = asyncio.Queue(maxsize=buffer_frames)
        self._error: Exception | None = None
        self._pump = asyncio.create_task(self._send_frames())

    def _discard_pending(self) -> None:
        while not self._frames.empty():
            self._frames.get_nowait()
            self._frames.task_done()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise ConnectionError(f"voice send failed: {self._error}") from self._error
        if self._pump.done():
            raise ConnectionError("voice connection is no longer sending")

    async def _send_frames(self) -> None:
        loop = asyncio.get_running_loop()
        self.pacer.reset(loop.time())
        while True:
            starved = self._frames.empty()
            frame = await self._frames.get()
            if starved:
                # Restart the clock after an underrun instead of bursting to catch up.
                self.pacer.reset(loop.time())
            try:
                self.voice_client.send_audio_packet(frame, encode=False)
            except Exception as exc:
                logger.error("Failed to send voice packet: %s", exc)
                self._error = exc
                self._discard_pending()
                return
            finally:
                self._frames.task_done()
            await asyncio.sleep(self.pacer.delay(loop.time()))

    async def send_frame(self, frame: bytes) -> None:
        self._raise_if_failed()
        await self._frames.put(frame)

    async def speaking(self, active: bool) -> None:
        state = discord.SpeakingState.voice if active else discord.SpeakingState.none
        await self.voice_client.ws.speak(state)

    async def drain(self) -> None:
        await self._frames.join()
        if self._error is not None:
            self._raise_if_failed()

    async def disconnect(self) -> None:
        self._pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._pump
        await self.voice_client.disconnect()


class DiscordGateway(MembershipLookup, VoiceGateway):
    """A bot session that answers membership queries and joins voice channels."""

    def __init__(self, settings: Settings | None = None, client: discord.Client | None = None):
        self.settings = settings or get_settings()
        self._client = client
        self._bot_task: asyncio.Task | None = None

    @property
    def client(self) -> discord.Client:
        if self._client is None:
            intents = discord.Intents.default()
            intents.guilds = True
            intents.voice_states = True
            intents.members = True
            self._client = discord.Client(intents=intents)

            @self._client.event
            async def on_ready() -> None:
                logger.info("Discord bot ready as %s", self._client.user)

        return self._client

    async def start(self) -> None:
        if not self.settings.discord_bot_token:
            logger.warning("Discord bot token not configured")
            return
        client = self.client
        self._bot_task = asyncio.create_task(client.start(self.settings.discord_bot_token))
        logger.info("Discord gateway starting")
        await client.wait_until_ready()

    async def stop(self) -> None:
        if self._client and not self._client.is_closed():
            await self._client.close()
        if self._bot_task:
            self._bot_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._bot_task

    def _guild(self, guild_id: str) -> discord.Guild:
        guild = self.client.get_guild(int(guild_id))
        if guild is None:
            raise LookupError(f"guild {guild_id} is not available")
        return guild

    async def guild_channels(self, guild_id: str) -> list[ChannelInfo]:
        channels = []
        for channel in self._guild(guild_id).channels:
            if isinstance(channel, discord.VoiceChannel):
                channels.append(ChannelInfo(str(channel.id), VOICE_CHANNEL, len(channel.members)))
            else:
                channels.append(ChannelInfo(str(channel.id), str(channel.type)))
        return channels

    async def join_voice(self, guild_id: str, channel_id: str) -> VoiceTransport:
        try:
            channel = self._guild(guild_id).get_channel(int(channel_id))
        except LookupError as exc:
            raise VoiceJoinError(str(exc)) from exc
        if not isinstance(channel, discord.VoiceChannel):
            raise VoiceJoinError(f"channel {channel_id} in guild {guild_id} is not a voice channel")

        try:
            voice_client = await channel.connect(self_deaf=True)
        except (discord.ClientException, asyncio.TimeoutError) as exc:
            raise VoiceJoinError(
                f"unable to join voice channel {channel_id} in guild {guild_id}: {exc}"
            ) from exc
        logger.debug("Joined voice channel %s in guild %s", channel_id, guild_id)
        return DiscordVoiceTransport(voice_client)
