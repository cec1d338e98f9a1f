"""Audio chunk packetization utilities.

Handles format metadata, validation, and base64 encoding/decoding of
microphone PCM chunks for JSON transport over WebSocket.

Default capture format:
    - Sample rate: 16kHz
    - Channels: mono
    - Bit depth: 16-bit signed integer (little endian)
    - Block: 100ms = 1600 samples * 2 bytes = 3200 bytes
"""

import base64
import binascii
from dataclasses import dataclass, field

# Audio constants
SAMPLE_RATE_HZ: int = 16000
BIT_DEPTH: int = 16
CHANNELS: int = 1


@dataclass(frozen=True)
class AudioFormat:
    """Linear PCM format metadata."""

    sample_rate: int = SAMPLE_RATE_HZ
    bit_depth: int = BIT_DEPTH
    channels: int = CHANNELS

    @property
    def bytes_per_frame(self) -> int:
        """Bytes per sample across all channels."""
        return self.bit_depth // 8 * self.channels

    @property
    def mime_type(self) -> str:
        """MIME type understood by the service for raw PCM input."""
        return f"audio/pcm;rate={self.sample_rate}"

    def frames_for_ms(self, duration_ms: int) -> int:
        """Number of sample frames in a block of the given duration."""
        return self.sample_rate * duration_ms // 1000

    def bytes_for_ms(self, duration_ms: int) -> int:
        """Number of bytes in a block of the given duration."""
        return self.frames_for_ms(duration_ms) * self.bytes_per_frame


DEFAULT_FORMAT = AudioFormat()


@dataclass(frozen=True)
class AudioChunk:
    """One captured block of PCM audio.

    Attributes:
        data: Raw PCM bytes
        format: PCM format of ``data``
        sequence: 1-based capture order
    """

    data: bytes
    format: AudioFormat = field(default=DEFAULT_FORMAT)
    sequence: int = 0

    @property
    def duration_ms(self) -> float:
        """Duration of this chunk in milliseconds."""
        frames = len(self.data) // self.format.bytes_per_frame
        return frames * 1000.0 / self.format.sample_rate


def validate_chunk(data: bytes, audio_format: AudioFormat = DEFAULT_FORMAT) -> None:
    """Validate that a PCM chunk holds whole sample frames.

    Args:
        data: Raw PCM audio bytes
        audio_format: Expected PCM format

    Raises:
        ValueError: If the chunk is empty or not frame-aligned
    """
    if not data:
        raise ValueError("Invalid chunk: empty audio buffer")
    if len(data) % audio_format.bytes_per_frame != 0:
        raise ValueError(
            f"Invalid chunk size: {len(data)} bytes is not a multiple of "
            f"{audio_format.bytes_per_frame} bytes per frame "
            f"({audio_format.bit_depth}-bit, {audio_format.channels} channel(s))"
        )


def encode_pcm_chunk(data: bytes, audio_format: AudioFormat = DEFAULT_FORMAT) -> str:
    """Encode a PCM chunk to a base64 string for JSON transport.

    Args:
        data: Raw PCM audio bytes
        audio_format: PCM format of ``data``

    Returns:
        Base64-encoded string

    Raises:
        ValueError: If the chunk is not frame-aligned
    """
    validate_chunk(data, audio_format)
    return base64.b64encode(data).decode("ascii")


def decode_pcm_chunk(encoded: str, audio_format: AudioFormat = DEFAULT_FORMAT) -> bytes:
    """Decode a base64 string to a PCM chunk.

    Args:
        encoded: Base64-encoded PCM chunk
        audio_format: Expected PCM format

    Returns:
        Raw PCM audio bytes

    Raises:
        ValueError: If decoding fails or the chunk is not frame-aligned
    """
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Failed to decode base64 audio chunk: {e}") from e

    validate_chunk(data, audio_format)
    return data


class AudioChunkPacketizer:
    """Stamps captured buffers with format metadata and sequence numbers."""

    def __init__(self, audio_format: AudioFormat = DEFAULT_FORMAT) -> None:
        self.format = audio_format
        self._sequence_number: int = 0

    def packetize(self, data: bytes) -> AudioChunk:
        """Wrap a captured buffer as the next AudioChunk.

        Raises:
            ValueError: If the buffer is not frame-aligned
        """
        validate_chunk(data, self.format)
        self._sequence_number += 1
        return AudioChunk(data=data, format=self.format, sequence=self._sequence_number)

    def reset(self) -> None:
        """Reset sequence number counter."""
        self._sequence_number = 0

    @property
    def current_sequence(self) -> int:
        """Get current sequence number."""
        return self._sequence_number
