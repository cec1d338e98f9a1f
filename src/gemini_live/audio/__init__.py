"""Audio utilities for microphone capture and PCM chunk packetization.

This module provides the audio source abstraction, the sounddevice-backed
microphone source, and base64 encoding/decoding of 16-bit PCM chunks.
"""

from .capture import AudioSource, MicrophoneSource, compute_rms_level
from .packetizer import (
    AudioChunk,
    AudioChunkPacketizer,
    AudioFormat,
    decode_pcm_chunk,
    encode_pcm_chunk,
    validate_chunk,
)

__all__ = [
    "AudioSource",
    "MicrophoneSource",
    "compute_rms_level",
    "AudioChunk",
    "AudioChunkPacketizer",
    "AudioFormat",
    "encode_pcm_chunk",
    "decode_pcm_chunk",
    "validate_chunk",
]
