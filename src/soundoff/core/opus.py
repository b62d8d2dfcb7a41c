"""Length-prefixed Opus frames and streaming them to a voice transport.

Stored audio is a bare concatenation of frames, each a little-endian
``uint16`` length followed by that many bytes of Opus data. There is no
header; the stream ends at end-of-input.
"""

from __future__ import annotations

import asyncio
import logging
import struct
from collections.abc import Iterable, Iterator
from typing import BinaryIO

from soundoff.core.errors import VoiceSendTimeout
from soundoff.core.voice import VoiceTransport

logger = logging.getLogger(__name__)

_LENGTH = struct.Struct("<H")
MAX_FRAME_SIZE = 0xFFFF


def iter_frames(reader: BinaryIO) -> Iterator[bytes]:
    """Yield raw frames from ``reader`` until end-of-input.

    A frame cut short by the end of input ends the stream.
    """
    index = 0
    while True:
        header = reader.read(_LENGTH.size)
        if not header:
            return
        if len(header) < _LENGTH.size:
            logger.warning("Truncated frame header after %d frames", index)
            return
        (size,) = _LENGTH.unpack(header)
        frame = reader.read(size)
        if len(frame) < size:
            logger.warning("Truncated frame %d: expected %d bytes, got %d", index, size, len(frame))
            return
        yield frame
        index += 1


def encode_frames(frames: Iterable[bytes]) -> bytes:
    chunks = []
    for frame in frames:
        if len(frame) > MAX_FRAME_SIZE:
            raise ValueError(f"frame of {len(frame)} bytes exceeds {MAX_FRAME_SIZE}")
        chunks.append(_LENGTH.pack(len(frame)))
        chunks.append(frame)
    return b"".join(chunks)


async def stream_to_voice(
    frames: Iterable[bytes], transport: VoiceTransport, send_timeout: float = 60.0
) -> int:
    """Send ``frames`` one at a time and wait for the transport to drain.

    Returns the number of frames sent. Raises VoiceSendTimeout when the
    transport stops accepting frames for ``send_timeout`` seconds.
    """
    sent = 0
    for frame in frames:
        try:
            await asyncio.wait_for(transport.send_frame(frame), timeout=send_timeout)
        except TimeoutError as exc:
            raise VoiceSendTimeout(
                f"voice transport did not accept frame {sent} within {send_timeout}s"
            ) from exc
        sent += 1

    try:
        await asyncio.wait_for(transport.drain(), timeout=send_timeout)
    except TimeoutError as exc:
        raise VoiceSendTimeout(f"voice transport did not drain within {send_timeout}s") from exc
    return sent
