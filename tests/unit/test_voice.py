"""Tests for soundoff.core.voice."""

import pytest

from soundoff.core.errors import VoiceJoinError
from soundoff.core.voice import ChannelInfo, max_attended_channel, voice_session

from .fakes import FakeGateway, RecordingTransport


def test_max_attended_channel_picks_most_members():
    channels = [
        ChannelInfo("1", "voice", 2),
        ChannelInfo("2", "text", 50),
        ChannelInfo("3", "voice", 5),
    ]
    assert max_attended_channel(channels).id == "3"


def test_max_attended_channel_first_wins_tie():
    channels = [ChannelInfo("1", "voice", 3), ChannelInfo("2", "voice", 3)]
    assert max_attended_channel(channels).id == "1"


def test_max_attended_channel_empty_voice_channels():
    channels = [ChannelInfo("1", "voice", 0), ChannelInfo("2", "text", 9)]
    assert max_attended_channel(channels) is None


def test_max_attended_channel_no_channels():
    assert max_attended_channel([]) is None


async def test_voice_session_speaks_and_disconnects():
    gateway = FakeGateway()

    async with voice_session(gateway, "G1", "C9") as transport:
        await transport.send_frame(b"a")

    assert gateway.joins == [("G1", "C9")]
    assert gateway.transport.speaking_states == [True, False]
    assert gateway.transport.disconnected


async def test_voice_session_cleans_up_on_error():
    gateway = FakeGateway(RecordingTransport(fail_after=0))

    with pytest.raises(ConnectionError):
        async with voice_session(gateway, "G1", "C9") as transport:
            await transport.send_frame(b"a")

    assert gateway.transport.speaking_states == [True, False]
    assert gateway.transport.disconnected


async def test_voice_session_wraps_join_failure():
    gateway = FakeGateway(error=RuntimeError("no permission"))

    with pytest.raises(VoiceJoinError, match="no permission"):
        async with voice_session(gateway, "G1", "C9"):
            pass
