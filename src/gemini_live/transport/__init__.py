"""Transport layer for the Live API connection.

Provides the duplex channel abstraction, its WebSocket implementation, and
the wire protocol models exchanged over it.
"""

from gemini_live.transport.base import CLOSE_NORMAL, DuplexChannel, Frame, FrameKind
from gemini_live.transport.protocol import (
    AudioStreamEndMessage,
    BinaryPayload,
    CloseNotice,
    InboundMessage,
    OutboundMessage,
    RealtimeAudioMessage,
    SetupMessage,
    TextPayload,
    decode_frame,
)
from gemini_live.transport.websocket_channel import WebSocketChannel, redact_url

__all__ = [
    "CLOSE_NORMAL",
    "DuplexChannel",
    "Frame",
    "FrameKind",
    "WebSocketChannel",
    "redact_url",
    "AudioStreamEndMessage",
    "BinaryPayload",
    "CloseNotice",
    "InboundMessage",
    "OutboundMessage",
    "RealtimeAudioMessage",
    "SetupMessage",
    "TextPayload",
    "decode_frame",
]
