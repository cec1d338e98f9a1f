"""Base duplex channel abstraction.

Defines the interface the session manager drives: a message-oriented,
full-duplex connection with independent send and receive directions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

# RFC 6455 close codes used by the client
CLOSE_NORMAL: int = 1000
CLOSE_GOING_AWAY: int = 1001


class FrameKind(Enum):
    """Kind of a received channel frame."""

    TEXT = "text"
    BINARY = "binary"
    CLOSE = "close"


@dataclass(frozen=True)
class Frame:
    """One discrete message received from the channel.

    Attributes:
        kind: Frame kind
        data: Text payload (TEXT), bytes (BINARY), or None (CLOSE)
        close_code: Peer close code (CLOSE only, None if the peer sent none)
        close_reason: Peer close reason (CLOSE only)
    """

    kind: FrameKind
    data: str | bytes | None = None
    close_code: int | None = None
    close_reason: str = ""

    @classmethod
    def text(cls, data: str) -> "Frame":
        return cls(FrameKind.TEXT, data)

    @classmethod
    def binary(cls, data: bytes) -> "Frame":
        return cls(FrameKind.BINARY, data)

    @classmethod
    def close(cls, code: int | None = None, reason: str = "") -> "Frame":
        return cls(FrameKind.CLOSE, None, code, reason)


class DuplexChannel(ABC):
    """Base class for duplex message channels.

    Implementations allow one send and one receive to be in flight at the same
    time, and serialize concurrent sends so frames never interleave.
    """

    @abstractmethod
    async def send_text(self, data: str) -> None:
        """Send one text frame.

        Raises:
            ChannelClosedError: If the channel is closed
            TransportError: If the send fails
        """
        pass

    @abstractmethod
    async def send_binary(self, data: bytes) -> None:
        """Send one binary frame.

        Raises:
            ChannelClosedError: If the channel is closed
            TransportError: If the send fails
        """
        pass

    @abstractmethod
    async def receive(self) -> Frame:
        """Receive the next frame.

        Returns a CLOSE frame once the peer closes the connection.

        Raises:
            TransportError: If the receive fails for any other reason
        """
        pass

    @abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Close the channel with a close frame. Idempotent."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the channel is open for sending."""
        pass
