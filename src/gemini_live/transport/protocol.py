"""Live API message protocol definitions.

Defines Pydantic models for the outbound client messages and the inbound
message variants produced from channel frames. Outbound messages are
serialized as camelCase JSON text frames.
"""

import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from gemini_live.audio.packetizer import AudioChunk, encode_pcm_chunk
from gemini_live.config import SetupConfig
from gemini_live.transport.base import Frame, FrameKind


class WireModel(BaseModel):
    """Immutable model serialized with camelCase aliases."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_json(self) -> str:
        """Serialize to the JSON text sent on the wire."""
        return self.model_dump_json(by_alias=True)


class Part(WireModel):
    text: str


class Content(WireModel):
    parts: list[Part] = Field(..., min_length=1)


class GenerationConfig(WireModel):
    response_modalities: list[str] = Field(..., alias="responseModalities", min_length=1)


class Setup(WireModel):
    model: str = Field(..., min_length=1, description="Model identifier")
    generation_config: GenerationConfig = Field(..., alias="generationConfig")
    system_instruction: Content = Field(..., alias="systemInstruction")


class SetupMessage(WireModel):
    """Client → Server: session setup.

    Must be the first message sent on a session.
    """

    setup: Setup

    @classmethod
    def from_config(cls, config: SetupConfig) -> "SetupMessage":
        """Build the setup message from client configuration."""
        return cls(
            setup=Setup(
                model=config.model,
                generation_config=GenerationConfig(
                    response_modalities=list(config.response_modalities)
                ),
                system_instruction=Content(parts=[Part(text=config.system_instruction)]),
            )
        )


class Blob(WireModel):
    mime_type: str = Field(..., alias="mimeType")
    data: str = Field(..., description="Base64-encoded payload")


class RealtimeAudioInput(WireModel):
    audio: Blob


class RealtimeAudioMessage(WireModel):
    """Client → Server: one chunk of realtime microphone audio."""

    realtime_input: RealtimeAudioInput = Field(..., alias="realtimeInput")

    @classmethod
    def from_chunk(cls, chunk: AudioChunk) -> "RealtimeAudioMessage":
        """Encode a captured chunk as an audio message.

        Raises:
            ValueError: If the chunk is empty or not frame-aligned
        """
        return cls(
            realtime_input=RealtimeAudioInput(
                audio=Blob(
                    mime_type=chunk.format.mime_type,
                    data=encode_pcm_chunk(chunk.data, chunk.format),
                )
            )
        )


class AudioStreamEndInput(WireModel):
    audio_stream_end: Literal[True] = Field(default=True, alias="audioStreamEnd")


class AudioStreamEndMessage(WireModel):
    """Client → Server: end of the realtime audio stream."""

    realtime_input: AudioStreamEndInput = Field(
        default_factory=AudioStreamEndInput, alias="realtimeInput"
    )


# Union type for all client → server messages
OutboundMessage = SetupMessage | RealtimeAudioMessage | AudioStreamEndMessage


@dataclass(frozen=True)
class TextPayload:
    """Server → Client: a text frame, opaque JSON to the session core."""

    content: str

    def parse_json(self) -> dict[str, Any] | None:
        """Parse the content as a JSON object, or None if it is not one."""
        try:
            data = json.loads(self.content)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


@dataclass(frozen=True)
class BinaryPayload:
    """Server → Client: a binary frame (unexpected for text responses)."""

    data: bytes


@dataclass(frozen=True)
class CloseNotice:
    """Server → Client: the connection was closed."""

    code: int | None
    reason: str = ""


# Union type for all server → client messages
InboundMessage = TextPayload | BinaryPayload | CloseNotice


def decode_frame(frame: Frame) -> InboundMessage:
    """Decode a channel frame into an inbound message.

    Args:
        frame: Received frame

    Returns:
        The matching inbound message variant
    """
    if frame.kind is FrameKind.CLOSE:
        return CloseNotice(code=frame.close_code, reason=frame.close_reason)

    if frame.kind is FrameKind.BINARY:
        data = frame.data if isinstance(frame.data, bytes) else str(frame.data or "").encode()
        return BinaryPayload(data=data)

    if isinstance(frame.data, bytes):
        return TextPayload(content=frame.data.decode("utf-8", errors="replace"))
    return TextPayload(content=frame.data or "")
